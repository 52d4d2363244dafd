"""Service layer for the bearnotes core."""
