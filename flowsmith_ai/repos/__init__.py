"""Persistence layer: repository protocols and their SQLAlchemy implementations."""
