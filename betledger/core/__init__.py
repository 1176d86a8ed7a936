"""Configuration, database setup and schema."""
