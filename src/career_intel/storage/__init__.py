"""Database engine, ORM tables and migrations."""
