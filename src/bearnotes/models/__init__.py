"""Domain and database models for the bearnotes core."""
