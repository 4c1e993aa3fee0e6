"""Eager loading of (nested) relations for a batch of entities.

``load_relations(users, ["role", "posts.comments"])`` issues one query per
relation per nesting level, no matter how many entities are in the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from quarrydb.orm.relations import make_relation
from quarrydb.schema.registry import describe

if TYPE_CHECKING:
    from quarrydb.core.connection import SQLExecutor
    from quarrydb.orm.model import Model

logger = logging.getLogger(__name__)


def parse_relation_paths(paths: Iterable[str]) -> dict[str, list[str]]:
    """Group dot paths by their first segment.

    Example:
        ["roles.permissions", "roles", "profile"]
        -> {"roles": ["permissions"], "profile": []}
    """
    tree: dict[str, list[str]] = {}
    for path in paths:
        head, _, rest = path.strip().partition(".")
        if not head:
            continue
        children = tree.setdefault(head, [])
        if rest and rest not in children:
            children.append(rest)
    return tree


def load_relations(
    models: Sequence[Model], paths: Iterable[str], executor: SQLExecutor | None = None
) -> Sequence[Model]:
    """Resolve the requested relations for every model in the batch.

    Each level's fetched rows become the parent batch for the next level;
    the nested paths ride along on the level query and are loaded by it.
    """
    if not models:
        return models

    entity = type(models[0])
    descriptor = describe(entity)

    for name, children in parse_relation_paths(paths).items():
        relation = make_relation(descriptor.relation(name), entity, executor=executor)
        query = relation.add_eager_constraints(models)
        if children:
            query.with_(*children)
        results = query.get()
        relation.match(models, results, name)
        logger.debug(
            f"Eager loaded {entity.__name__}.{name}: {len(results)} rows for {len(models)} parents"
        )

    return models
