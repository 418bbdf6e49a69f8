"""Identifier validation and quoting.

Table and column names can never be bound as statement parameters, so any
name that did not come straight from the catalog (HTTP path parameters,
artifact keys) must pass ``validate_identifier`` before it is interpolated.
"""

import re

from bakery_db.errors import InvalidIdentifierError

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z0-9_]+")


def is_valid_identifier(name: object) -> bool:
    """Return True if *name* is a non-empty string of ``[A-Za-z0-9_]``."""
    return isinstance(name, str) and IDENTIFIER_PATTERN.fullmatch(name) is not None


def validate_identifier(name: object) -> str:
    """Return *name* unchanged or raise ``InvalidIdentifierError``.

    Example:
        >>> validate_identifier("daily_sales")
        'daily_sales'
        >>> validate_identifier("users; DROP TABLE users")
        Traceback (most recent call last):
        ...
        bakery_db.errors.InvalidIdentifierError: Invalid identifier: 'users; DROP TABLE users'
    """
    if not is_valid_identifier(name):
        raise InvalidIdentifierError(name)
    return name  # type: ignore[return-value]


def quote_identifier(name: object) -> str:
    """Validate *name* and wrap it in double quotes for interpolation."""
    return f'"{validate_identifier(name)}"'
