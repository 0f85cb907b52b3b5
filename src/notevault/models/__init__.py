"""Domain (pydantic) and persistence (SQLAlchemy) models."""
