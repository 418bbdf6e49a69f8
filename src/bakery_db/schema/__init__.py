"""Schema introspection, identifier safety, and the fixed application tables.

Usage:
    from bakery_db.schema import SchemaIntrospector, validate_identifier
    from bakery_db.schema import SchemaEnsurer, validate_schema
"""

from bakery_db.schema.comparator import validate_schema
from bakery_db.schema.ensure import SchemaEnsurer
from bakery_db.schema.identifiers import quote_identifier, validate_identifier
from bakery_db.schema.introspector import SchemaIntrospector

__all__ = [
    "SchemaEnsurer",
    "SchemaIntrospector",
    "quote_identifier",
    "validate_identifier",
    "validate_schema",
]
