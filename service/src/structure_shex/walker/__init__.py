"""Traversal of StructureDefinitions into property mappings."""

from .model_walker import ModelVisitor, ModelWalker, dispatch
from .nodes import PropertyMapping, TraversalContext, TraversalEvent
from .scalars import ScalarType

__all__ = [
    "ModelVisitor",
    "ModelWalker",
    "dispatch",
    "PropertyMapping",
    "TraversalContext",
    "TraversalEvent",
    "ScalarType",
]
