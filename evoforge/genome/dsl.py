"""DSL design genomes — entities, relationships and metadata.

This is the genome family for evolving a domain model: a set of named
entities with attributes, and typed relationships between them. Entities and
relationships are the units. The entity collection is variable-length:
a mutation may add, remove or rename one entity, within template bounds.

Entity names are unique within a design and every relationship points at
entities the design holds. ``DslOps.rebuild`` restores both after any
operator has reassembled the units.
"""

from __future__ import annotations

import random
from itertools import zip_longest
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from evoforge.genome.base import Genome, GenomeFactory, GenomeOps, Unit

DEFAULT_ENTITY_NAMES = (
    "User", "Account", "Post", "Comment", "Tag", "Order", "Product",
    "Invoice", "Team", "Project", "Task", "Event",
)
DEFAULT_ATTRIBUTE_NAMES = (
    "name", "email", "title", "body", "status", "amount", "created_at",
    "updated_at", "owner_id", "priority", "slug", "description",
)
DEFAULT_RELATIONSHIP_KINDS = ("belongs_to", "has_many", "has_one", "many_to_many")


class Entity(BaseModel):
    name: str
    attributes: tuple[str, ...] = ()

    model_config = {"frozen": True}


class Relationship(BaseModel):
    source: str
    target: str
    kind: str = "has_many"

    model_config = {"frozen": True}


class DslGenome(Genome):
    family: Literal["dsl"] = "dsl"
    entities: tuple[Entity, ...]
    relationships: tuple[Relationship, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)

    def entity_names(self) -> list[str]:
        return [e.name for e in self.entities]


class DslTemplate(BaseModel):
    """Vocabulary and bounds for DSL genomes."""

    min_entities: int = Field(default=1, ge=1)
    max_entities: int = Field(default=8, ge=1)
    max_attributes: int = Field(default=4, ge=1)
    relationship_density: float = Field(default=0.5, ge=0.0, le=1.0)
    entity_names: tuple[str, ...] = DEFAULT_ENTITY_NAMES
    attribute_names: tuple[str, ...] = DEFAULT_ATTRIBUTE_NAMES
    relationship_kinds: tuple[str, ...] = DEFAULT_RELATIONSHIP_KINDS
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_bounds(self) -> DslTemplate:
        if self.min_entities > self.max_entities:
            raise ValueError("min_entities must not exceed max_entities")
        if not self.entity_names or not self.attribute_names or not self.relationship_kinds:
            raise ValueError("vocabularies must not be empty")
        return self


def _random_entity(template: DslTemplate, name: str, rng: random.Random) -> Entity:
    count = rng.randint(1, min(template.max_attributes, len(template.attribute_names)))
    return Entity(name=name, attributes=tuple(rng.sample(template.attribute_names, count)))


def _fresh_name(template: DslTemplate, taken: set[str], rng: random.Random) -> str:
    free = [n for n in template.entity_names if n not in taken]
    if free:
        return rng.choice(free)
    i = len(taken) + 1
    while f"Entity{i}" in taken:
        i += 1
    return f"Entity{i}"


def _renamed(rel: Relationship, old: str, new: str) -> Relationship:
    if old not in (rel.source, rel.target):
        return rel
    return rel.model_copy(update={
        "source": new if rel.source == old else rel.source,
        "target": new if rel.target == old else rel.target,
    })


def _pair_by(key, items_a: list, items_b: list) -> list[tuple[Any, Any]]:
    """Pair items sharing a key; the leftovers of each side pair off by position."""
    index_b = {key(u): u for u in items_b}
    keys_a = {key(u) for u in items_a}
    shared = [(u, index_b[key(u)]) for u in items_a if key(u) in index_b]
    only_a = [u for u in items_a if key(u) not in index_b]
    only_b = [u for u in items_b if key(u) not in keys_a]
    return shared + list(zip_longest(only_a, only_b))


class DslGenomeFactory(GenomeFactory):
    """Random DSL designs drawn from a template vocabulary."""

    async def random(self, template: DslTemplate | None, rng: random.Random) -> DslGenome:
        template = template or DslTemplate()
        count = rng.randint(template.min_entities, template.max_entities)
        taken: set[str] = set()
        entities = []
        for _ in range(count):
            name = _fresh_name(template, taken, rng)
            taken.add(name)
            entities.append(_random_entity(template, name, rng))

        relationships = []
        names = [e.name for e in entities]
        for source in names:
            if len(names) > 1 and rng.random() < template.relationship_density:
                target = rng.choice([n for n in names if n != source])
                relationships.append(
                    Relationship(source=source, target=target, kind=rng.choice(template.relationship_kinds))
                )

        return DslGenome(
            entities=tuple(entities),
            relationships=tuple(relationships),
            metadata=dict(template.metadata),
        )


class DslOps(GenomeOps):
    family = "dsl"

    def __init__(self, template: DslTemplate | None = None) -> None:
        self._template = template or DslTemplate()

    def units(self, genome: DslGenome) -> list[Unit]:
        return [*genome.entities, *genome.relationships]

    def rebuild(self, genome: DslGenome, units: list[Unit]) -> DslGenome:
        """Reassemble a design from units.

        A repeated entity name keeps its first entity. Relationships with a
        missing endpoint are dropped, and so are exact repeats.
        """
        entities: dict[str, Entity] = {}
        for unit in units:
            if isinstance(unit, Entity):
                entities.setdefault(unit.name, unit)

        relationships: list[Relationship] = []
        for unit in units:
            if not isinstance(unit, Relationship) or unit in relationships:
                continue
            if unit.source in entities and unit.target in entities:
                relationships.append(unit)

        return DslGenome(
            entities=tuple(entities.values()),
            relationships=tuple(relationships),
            metadata=dict(genome.metadata),
        )

    def mutate_unit(self, unit: Unit, rng: random.Random) -> Unit:
        if isinstance(unit, Entity):
            return self._mutate_entity(unit, rng)
        if isinstance(unit, Relationship):
            return self._mutate_relationship(unit, rng)
        raise TypeError(f"not a DSL unit: {type(unit).__name__}")

    def _mutate_entity(self, entity: Entity, rng: random.Random) -> Entity:
        # Renames touch relationships too, so they live in resize.
        t = self._template
        moves = []
        missing = [f for f in t.attribute_names if f not in entity.attributes]
        if missing and len(entity.attributes) < t.max_attributes:
            moves.append("add_attribute")
        if len(entity.attributes) > 1:
            moves.append("drop_attribute")
        if not moves:
            return entity

        if rng.choice(moves) == "add_attribute":
            return entity.model_copy(update={"attributes": entity.attributes + (rng.choice(missing),)})
        drop = rng.randrange(len(entity.attributes))
        return entity.model_copy(
            update={"attributes": entity.attributes[:drop] + entity.attributes[drop + 1:]}
        )

    def _mutate_relationship(self, rel: Relationship, rng: random.Random) -> Relationship:
        kinds = [k for k in self._template.relationship_kinds if k != rel.kind]
        if kinds:
            return rel.model_copy(update={"kind": rng.choice(kinds)})
        return rel.model_copy(update={"source": rel.target, "target": rel.source})

    def align(
        self, units_a: list[Unit], units_b: list[Unit]
    ) -> list[tuple[Unit | None, Unit | None]]:
        """Entities pair by name and relationships by endpoints.

        Names held by only one parent pair off against the other parent's
        leftovers, so a child never repeats a name and keeps at least as
        many entities as the smaller parent.
        """
        ents_a = [u for u in units_a if isinstance(u, Entity)]
        ents_b = [u for u in units_b if isinstance(u, Entity)]
        rels_a = [u for u in units_a if isinstance(u, Relationship)]
        rels_b = [u for u in units_b if isinstance(u, Relationship)]
        return (
            _pair_by(lambda e: e.name, ents_a, ents_b)
            + _pair_by(lambda r: (r.source, r.target), rels_a, rels_b)
        )

    def resize(self, units: list[Unit], rate: float, rng: random.Random) -> list[Unit]:
        """One structural move with probability ``rate``: add, remove or rename an entity."""
        if rng.random() >= rate:
            return units
        t = self._template
        entities = [u for u in units if isinstance(u, Entity)]
        relationships = [u for u in units if isinstance(u, Relationship)]
        taken = {e.name for e in entities}

        moves = []
        if len(entities) < t.max_entities:
            moves.append("grow")
        if len(entities) > t.min_entities:
            moves.append("shrink")
        if entities and any(n not in taken for n in t.entity_names):
            moves.append("rename")
        if not moves:
            return units

        move = rng.choice(moves)
        if move == "grow":
            entities.append(_random_entity(t, _fresh_name(t, taken, rng), rng))
        elif move == "shrink":
            removed = entities.pop(rng.randrange(len(entities)))
            relationships = [
                r for r in relationships
                if removed.name not in (r.source, r.target)
            ]
        else:
            i = rng.randrange(len(entities))
            old = entities[i].name
            new = rng.choice([n for n in t.entity_names if n not in taken])
            entities[i] = entities[i].model_copy(update={"name": new})
            relationships = [_renamed(r, old, new) for r in relationships]
        return [*entities, *relationships]

    def distance(self, a: DslGenome, b: DslGenome) -> float:
        """Jaccard distance over the sets of units."""
        set_a = set(self.units(a))
        set_b = set(self.units(b))
        union = set_a | set_b
        if not union:
            return 0.0
        return 1.0 - len(set_a & set_b) / len(union)
