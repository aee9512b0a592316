from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any

from ..data.structure import FieldBinding, Structure, StructureField


class TraversalEvent(str, Enum):
    """The three operations of the traversal protocol, named after the visitor methods."""

    ENTER = "enter"
    ELEMENT = "element"
    EXIT = "exit"


@dataclass(eq=False, slots=True)
class PropertyMapping:
    """One JSON property of a FHIR field mapped onto an RDF predicate.

    Compared and hashed by identity so visitors can key emitted constraints by
    the mapping that produced them.
    """

    is_scalar: bool
    field: StructureField
    property: str
    predicate: str
    # shape label for complex types, ScalarType for scalars
    type: Any
    binding: FieldBinding | None = None
    specializes: list[PropertyMapping] = dataclass_field(default_factory=list)


@dataclass(slots=True)
class TraversalContext:
    """Walk state for one structure: the open nested fields and the chain of
    structures being walked (outermost first)."""

    structure: Structure
    lineage: tuple[str, ...]
    nesting: list[PropertyMapping] = dataclass_field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.nesting)

    def descend(self, structure: Structure) -> TraversalContext:
        return TraversalContext(structure=structure, lineage=self.lineage + (structure.id,))

    def divergence(self, path: list[str]) -> int:
        """Index of the first open level that ``path`` no longer runs through."""
        for i, nested in enumerate(self.nesting):
            if i >= len(path) or nested.property != path[i]:
                return i
        return len(self.nesting)
