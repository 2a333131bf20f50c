"""Custom SQLAlchemy types for cross-database compatibility.

PostgreSQL runs in production and SQLite in the test suite; the list
columns below use native arrays on the former and JSON text on the latter.
"""

import json
from typing import Any, List, Optional

from sqlalchemy import String, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import ARRAY


class StringArray(TypeDecorator):
    """
    An ordered list of strings.

    - On PostgreSQL: native ARRAY(String)
    - Elsewhere: JSON text

    Usage:
        question_ids = Column(StringArray(), nullable=False, default=list)
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(String))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: Optional[List[str]], dialect) -> Any:
        if value is None:
            return None
        if dialect.name == "postgresql":
            return list(value)
        return json.dumps(list(value))

    def process_result_value(self, value: Any, dialect) -> Optional[List[str]]:
        if value is None:
            return None
        if dialect.name == "postgresql":
            return list(value)
        if isinstance(value, str):
            return json.loads(value)
        return value
