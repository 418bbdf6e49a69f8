"""Schema comparison using set operations.

Compares expected columns against actual columns from the database.
Pure logic -- no I/O. The schema ensurer uses it to find which of the
application's fixed columns are missing from an existing table.

Usage:
    from bakery_db.schema.comparator import validate_schema

    actual = await introspector.get_column_names()
    result = validate_schema(actual, {"users": {"id", "username"}})
    for diff in result.missing_columns:
        print(diff.table, diff.column)
"""

from bakery_db.schema.models import ColumnDiff, SchemaValidationResult


def validate_schema(
    actual_columns: dict[str, set[str]],
    expected_columns: dict[str, set[str]],
) -> SchemaValidationResult:
    """Validate actual database columns against expected columns.

    Column names are compared case-insensitively: the legacy application
    created its tables with unquoted camelCase names, which PostgreSQL folds
    to lower case.

    Args:
        actual_columns: Table name -> column names, as returned by
            ``SchemaIntrospector.get_column_names()``.
        expected_columns: Table name -> expected column names.

    Returns:
        ``SchemaValidationResult``; ``valid`` is False if any expected table
        or column is missing. Extra tables are reported but do not affect
        ``valid``.

    Examples:
        >>> validate_schema({"users": {"id"}}, {"users": {"id", "name"}}).valid
        False
        >>> validate_schema({"users": {"id"}}, {}).valid
        True
    """
    actual = {t.lower(): {c.lower() for c in cols} for t, cols in actual_columns.items()}
    expected = {t.lower(): cols for t, cols in expected_columns.items()}

    missing_tables = sorted(set(expected) - set(actual))
    extra_tables = sorted(set(actual) - set(expected))

    missing_columns: list[ColumnDiff] = []
    for table_name in sorted(set(expected) & set(actual)):
        for col_name in sorted(expected[table_name]):
            if col_name.lower() not in actual[table_name]:
                missing_columns.append(
                    ColumnDiff(
                        table=table_name,
                        column=col_name,
                        message=f"Column '{col_name}' missing from table '{table_name}'",
                    )
                )

    return SchemaValidationResult(
        valid=not missing_tables and not missing_columns,
        missing_tables=missing_tables,
        missing_columns=missing_columns,
        extra_tables=extra_tables,
    )
