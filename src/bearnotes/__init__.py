"""
Bearnotes - a personal note-taking core.

Notes are organized into user-defined categories, searched and ranked,
and moved in and out of the store as JSON, Markdown, PDF and backups.
The same operations are exposed as an MCP server.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bearnotes")
except PackageNotFoundError:
    __version__ = "0.3.0"
