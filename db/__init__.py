"""Хранилища записей: SQLAlchemy (SQLite/PostgreSQL) и Supabase."""
