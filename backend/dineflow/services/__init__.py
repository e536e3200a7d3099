"""Business operations: each takes an open SQLAlchemy session as its first argument."""
