"""Query building, relations and the active-record write path."""

from quarrydb.orm.loader import load_relations
from quarrydb.orm.model import Model
from quarrydb.orm.query import QueryBuilder

__all__ = [
    "Model",
    "QueryBuilder",
    "load_relations",
]
