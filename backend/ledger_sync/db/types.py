"""Column types that behave on both PostgreSQL and SQLite."""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite test databases)
JSONType = JSON().with_variant(JSONB(), "postgresql")
