"""Database models and persistence helpers."""
