"""
Core module for configuration and the test session pipeline.

Note: the session, scoring and auth modules are not imported at package level
to avoid circular imports with iqtest.models (which imports datetime_utils
from iqtest.core). Import them directly: from iqtest.core.sessions import ...
"""
from .config import settings

__all__ = ["settings"]
