"""Naming conventions for tables and keys.

These are the defaults used when a declaration leaves a name out. Each can
be replaced by passing the name explicitly on the declaration.
"""

from __future__ import annotations

import re

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def snake_case(name: str) -> str:
    """Convert a PascalCase or camelCase name to snake_case.

    Examples:
        "OrderItem" -> "order_item"
        "User" -> "user"
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def pluralize(word: str) -> str:
    """Pluralize an English noun with the usual suffix rules."""
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    return word + "s"


def generate_table_name(class_name: str) -> str:
    """Derive a table name from an entity class name.

    Examples:
        "User" -> "users"
        "OrderItem" -> "order_items"
        "Category" -> "categories"
    """
    return pluralize(snake_case(class_name))


def belongs_to_foreign_key(field_name: str) -> str:
    """Default foreign key column for a BelongsTo field.

    A field already named like a key ("roleId", "role_id") is used as is.
    """
    if field_name.endswith(("id", "Id", "ID")):
        return field_name
    return f"{field_name}_id"


def has_foreign_key(parent_class_name: str, parent_key: str) -> str:
    """Default foreign key column a HasOne/HasMany expects on the related table."""
    return f"{snake_case(parent_class_name)}_{parent_key}"


def pivot_table_name(first_table: str, second_table: str) -> str:
    """Default pivot table: both table names sorted and joined with '_'."""
    return "_".join(sorted([first_table, second_table]))


def pivot_key(class_name: str, primary_key: str | None) -> str:
    """Default pivot column referencing one side of a many-to-many.

    A distinctive primary key name ("student_number") is reused; the generic
    "id" falls back to "<class>_id" so both pivot columns stay distinct.
    """
    if primary_key and primary_key != "id":
        return primary_key
    return f"{snake_case(class_name)}_id"
