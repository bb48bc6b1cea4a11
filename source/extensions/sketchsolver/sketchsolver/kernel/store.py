"""
Entity / Constraint Store — the solver's single source of geometric state.

The store owns every entity and constraint by a stable string id.  It is
pure data plus validation: nothing here iterates or solves.  Insertion
order is preserved and is the column / row order the solver uses.

Invariants:
- every constraint references only entities present in the store
  (enforced on ``add_constraint``, maintained by the cascade in
  ``remove_entity``);
- every entity's parameter vector has its kind's fixed arity.
"""

from __future__ import annotations

import json
from typing import Dict, Iterator, List, Optional, Sequence

from ..log import logger
from .constraints import Constraint
from .entities import GeoEntity, check_parameters
from .errors import MissingEntityError, SerializationError


class SketchStore:
    """
    Holds the current geometric state and the constraint set.

    Records passed to :meth:`add_entity` / :meth:`add_constraint` are
    copied, so callers cannot mutate store state behind its back.
    """

    def __init__(self):
        self._entities: Dict[str, GeoEntity] = {}
        self._constraints: Dict[str, Constraint] = {}

    # ── Queries ─────────────────────────────────────────────────────────────

    @property
    def entity_ids(self) -> List[str]:
        return list(self._entities.keys())

    @property
    def constraint_ids(self) -> List[str]:
        return list(self._constraints.keys())

    @property
    def entities(self) -> List[GeoEntity]:
        """All entities in insertion order."""
        return list(self._entities.values())

    @property
    def constraints(self) -> List[Constraint]:
        """All constraints in insertion order."""
        return list(self._constraints.values())

    @property
    def entity_count(self) -> int:
        return len(self._entities)

    @property
    def constraint_count(self) -> int:
        return len(self._constraints)

    def get_entity(self, eid: str) -> Optional[GeoEntity]:
        return self._entities.get(eid)

    def get_constraint(self, cid: str) -> Optional[Constraint]:
        return self._constraints.get(cid)

    def __contains__(self, eid: str) -> bool:
        return eid in self._entities

    def __iter__(self) -> Iterator[GeoEntity]:
        return iter(self._entities.values())

    def constraints_for_entity(self, eid: str) -> List[Constraint]:
        """Constraints that reference *eid*."""
        return [c for c in self._constraints.values() if c.references(eid)]

    # ── Entity mutations ────────────────────────────────────────────────────

    def add_entity(self, entity: GeoEntity) -> None:
        """
        Add an entity.  An entity with the same id is replaced, keeping the
        constraints that reference it.
        """
        self._entities[entity.eid] = entity.copy()

    def remove_entity(self, eid: str) -> bool:
        """
        Remove an entity and every constraint that references it.

        Returns:
            ``True`` if the entity existed.
        """
        dependent = [c.cid for c in self._constraints.values() if c.references(eid)]
        for cid in dependent:
            del self._constraints[cid]
        if dependent:
            logger.debug("Removing entity '%s' cascaded to %d constraint(s)", eid, len(dependent))
        return self._entities.pop(eid, None) is not None

    def update_entity(self, eid: str, parameters: Sequence[float]) -> bool:
        """
        Overwrite an entity's parameters.

        Fixed entities are left untouched.  Returns ``True`` if the
        parameters were written.
        """
        entity = self._entities.get(eid)
        if entity is None:
            raise MissingEntityError(eid)
        if entity.fixed:
            return False
        entity.parameters = check_parameters(entity.kind, parameters)
        return True

    # ── Constraint mutations ────────────────────────────────────────────────

    def add_constraint(self, constraint: Constraint) -> None:
        """
        Add a constraint.

        Raises:
            MissingEntityError: If any referenced entity id is absent.
                The store is not modified.
        """
        for eid in constraint.entity_ids:
            if eid not in self._entities:
                raise MissingEntityError(eid, constraint.cid)
        self._constraints[constraint.cid] = constraint.copy()

    def remove_constraint(self, cid: str) -> bool:
        return self._constraints.pop(cid, None) is not None

    def clear(self):
        """Remove all entities and constraints."""
        self._entities.clear()
        self._constraints.clear()

    # ── Serialization ───────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "entities": [e.to_dict() for e in self._entities.values()],
            "constraints": [c.to_dict() for c in self._constraints.values()],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SketchStore":
        """
        Rebuild a store from its persisted form.

        Entities are loaded before constraints so references resolve; a
        dangling reference raises :class:`MissingEntityError`.
        """
        if not isinstance(d, dict):
            raise SerializationError(f"Expected a mapping, got {type(d).__name__}")
        store = cls()
        for ed in d.get("entities", []):
            store.add_entity(GeoEntity.from_dict(ed))
        for cd in d.get("constraints", []):
            store.add_constraint(Constraint.from_dict(cd))
        return store

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "SketchStore":
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as exc:
            raise SerializationError(f"Invalid sketch JSON: {exc}") from exc
        return cls.from_dict(data)

    def __repr__(self) -> str:
        return (
            f"SketchStore(entities={self.entity_count}, "
            f"constraints={self.constraint_count})"
        )
