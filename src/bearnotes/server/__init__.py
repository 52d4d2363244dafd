"""MCP server for bearnotes."""
