"""Custom SQLAlchemy column types."""

import json

from sqlalchemy import JSON, Text, TypeDecorator


class JSONType(TypeDecorator):
    """Platform-agnostic JSON column type.

    Uses native JSON on PostgreSQL, stores as TEXT with json
    serialization everywhere else (SQLite in development and tests).
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSON())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect is not None and dialect.name == "postgresql":
            return value
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, (dict, list)):
            return value
        return json.loads(value)
