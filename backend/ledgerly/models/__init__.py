"""Database tables, enumerations and API schemas."""
