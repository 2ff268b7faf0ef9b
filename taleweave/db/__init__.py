"""Record store persistence on SQLAlchemy."""
