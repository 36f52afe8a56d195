"""Entity references and the index fields derived from them.

A cached result is indexed by the entities that contributed to it:
- typenames: every type name referenced by the result
- entityIds: one token per identified entity, built as "{typename}#{id}"

Invalidation selectors use the same shape as entities. A selector without
an id is broad (matches the whole type); with an id it is narrow.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

EntityId = Union[str, int]
BuildEntityId = Callable[[str, EntityId], str]


def build_entity_id(typename: str, id: EntityId) -> str:
    """Default entity token: ``typename#id``.

    If one typename followed by "#" can be a prefix of another typename's
    token, pass a custom builder to the cache instead.
    """
    return f"{typename}#{id}"


@dataclass(frozen=True)
class Entity:
    """An entity referenced by a cached result, or an invalidation selector."""

    typename: str
    id: EntityId | None = None

    @property
    def has_id(self) -> bool:
        return self.id is not None and self.id != ""


EntityLike = Union[Entity, Mapping[str, Any]]


def coerce_entity(value: EntityLike) -> Entity:
    """Accept an Entity or a ``{"typename": ..., "id": ...}`` mapping."""
    if isinstance(value, Entity):
        return value
    return Entity(typename=value["typename"], id=value.get("id"))


def collect_index_fields(
    entities: Iterable[EntityLike],
    build: BuildEntityId = build_entity_id,
) -> tuple[list[str], list[str]]:
    """Derive the deduplicated (typenames, entity_ids) index of a cache entry.

    Every entity contributes its typename; only entities with an id
    contribute a token. Order is first-seen.
    """
    typenames: dict[str, None] = {}
    entity_ids: dict[str, None] = {}
    for raw in entities:
        entity = coerce_entity(raw)
        typenames[entity.typename] = None
        if entity.has_id:
            entity_ids[build(entity.typename, entity.id)] = None  # type: ignore[arg-type]
    return list(typenames), list(entity_ids)


def partition_selectors(
    selectors: Iterable[EntityLike],
    build: BuildEntityId = build_entity_id,
) -> tuple[list[str], list[str]]:
    """Split selectors into broad typenames and narrow entity tokens.

    A broad selector subsumes every narrow selector of the same typename in
    the same call, whatever order they arrive in.
    """
    coerced = [coerce_entity(raw) for raw in selectors]

    typenames: dict[str, None] = {}
    for entity in coerced:
        if not entity.has_id:
            typenames[entity.typename] = None

    entity_ids: dict[str, None] = {}
    for entity in coerced:
        if entity.has_id and entity.typename not in typenames:
            entity_ids[build(entity.typename, entity.id)] = None  # type: ignore[arg-type]

    return list(typenames), list(entity_ids)
