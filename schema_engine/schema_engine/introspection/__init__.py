"""Typed metadata access and predicate validation."""

from __future__ import annotations

from schema_engine.introspection.introspector import SchemaIntrospector, SchemaSource
from schema_engine.introspection.predicate_guard import normalize_predicate

__all__ = [
    "SchemaIntrospector",
    "SchemaSource",
    "normalize_predicate",
]
