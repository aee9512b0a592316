"""Walk a FHIR StructureDefinition and report its properties to a visitor.

For each differential element the walker works out the RDF property (or, for
choice elements, properties) it stands for and calls the visitor:

- ``enter`` when an element opens a nested structure (BackboneElement/Element),
  before the nested type's own elements are walked,
- ``element`` once per leaf or choice element, with one mapping per type,
- ``exit`` when the nested structure ends, which is detected from the paths of
  the following elements (or the end of the definition).
"""
from __future__ import annotations

import inspect
import logging
from typing import Any, Protocol

from ..data.config import GeneratorConfig
from ..data.loader import DefinitionLoader
from ..data.structure import Structure, StructureField
from ..errors import FieldDefinitionError, StructureCycleError, StructureDefinitionError
from ..prefixes import FHIRPATH_ROOT, STRUCTURE_DEFN_ROOT, expand
from .nodes import PropertyMapping, TraversalContext, TraversalEvent
from .scalars import (
    FHIR_SCALAR_TYPE_TO_XSD,
    PROPERTY_OVERRIDES,
    ScalarType,
    placeholder_type_name,
)

logger = logging.getLogger(__name__)

DATATYPE_TYPES = [
    STRUCTURE_DEFN_ROOT + "DataType",
    STRUCTURE_DEFN_ROOT + "PrimitiveType",
]
# named with datatype rules although they are not derived from DataType
DATATYPE_LIKE = ["Timing"]

# these type codes mean the following elements are nested in this one
NESTED_STRUCTURE_TYPE_CODES = ["BackboneElement", "Element"]

CHOICE_SUFFIX = "[x]"
UNKNOWN_FHIR_TYPE = "UNKNOWN_FHIR_TYPE"


class ModelVisitor(Protocol):
    """Receiver of the traversal protocol. Methods may be plain or async."""

    def enter(self, mapping: PropertyMapping) -> Any: ...

    def element(self, mappings: list[PropertyMapping]) -> Any: ...

    def exit(self, mapping: PropertyMapping) -> Any: ...


async def dispatch(visitor: ModelVisitor, event: TraversalEvent, payload) -> None:
    logger.debug("%s %s", event.value, _describe(payload))
    result = getattr(visitor, event.value)(payload)
    if inspect.isawaitable(result):
        await result


def _describe(payload) -> str:
    if isinstance(payload, list):
        return ", ".join(m.property for m in payload)
    return payload.property


class ModelWalker:
    def __init__(self, loader: DefinitionLoader, config: GeneratorConfig) -> None:
        self.loader = loader
        self.config = config
        # top-level mappings of every structure walked as a root, for specialization
        self._top_level: dict[str, list[list[PropertyMapping]]] = {}
        self._bases: dict[str, str | None] = {}

    async def visit_resource(self, structure: Structure, visitor: ModelVisitor) -> None:
        ctx = TraversalContext(structure=structure, lineage=(structure.id,))
        visited = await self.visit_element(structure, visitor, ctx)
        await self._close(ctx, 0, visitor)

        self._bases[structure.id] = structure.base_name
        self._top_level[structure.id] = [
            mappings for mappings in visited if mappings and not _path_of(mappings[0].field)
        ]

    async def visit_element_by_name(
        self, name: str, visitor: ModelVisitor, parent: TraversalContext
    ) -> list[list[PropertyMapping]]:
        if name in parent.lineage:
            self.config.report(StructureCycleError(list(parent.lineage) + [name]))
            return []

        structure = await self.loader.get_structure_definition_by_name(name)
        if structure is None:
            logger.warning("no definition for nested type '%s', walking nothing", name)
            return []

        ctx = parent.descend(structure)
        visited = await self.visit_element(structure, visitor, ctx)
        await self._close(ctx, 0, visitor)
        return visited

    async def visit_element(
        self, structure: Structure, visitor: ModelVisitor, ctx: TraversalContext
    ) -> list[list[PropertyMapping]]:
        if structure.base_definition is not None and structure.base_name is None:
            self.config.report(
                StructureDefinitionError(
                    f"Don't know where to look for base structure {structure.base_definition}",
                    structure.id,
                )
            )
            return []

        ancestors = self._ancestor_mappings(structure)
        visited: list[list[PropertyMapping]] = []
        # the first element describes the structure itself
        for field in structure.fields[1:]:
            mappings = await self._visit_field(structure, field, visitor, ctx, ancestors)
            if mappings is None:
                continue
            if mappings:
                await dispatch(visitor, TraversalEvent.ELEMENT, mappings)
            visited.append(mappings)
        return visited

    async def _visit_field(
        self,
        structure: Structure,
        field: StructureField,
        visitor: ModelVisitor,
        ctx: TraversalContext,
        ancestors: list[list[PropertyMapping]],
    ) -> list[PropertyMapping] | None:
        """Mappings for one element, [] for nested structures, None if the element was rejected."""
        if field.id != field.path:
            return self._reject(f"id !== path in {structure.id} {field.id}", structure, field)

        if field.has_type == (field.content_reference is not None):
            return self._reject("expected one of (type, contentReference)", structure, field)

        if "." not in field.id:
            return self._reject("expected a dotted element path", structure, field)

        resource_name, *path, raw_name = field.id.split(".")
        if resource_name != structure.id:
            logger.warning(
                'property id %s does not start with target "%s" in %s structure def',
                field.id,
                structure.id,
                structure.id,
            )

        types = field.types
        curried = len(types) > 1
        if field.has_type and raw_name.endswith(CHOICE_SUFFIX) != curried:
            return self._reject(
                f"Not sure whether {field.id} is a curried property or not: {field.type_codes}",
                structure,
                field,
            )
        name = raw_name[: -len(CHOICE_SUFFIX)] if curried else raw_name

        await self._close(ctx, ctx.divergence(path), visitor)

        if field.content_reference is not None:
            target = field.content_reference
            target = target[1:] if target.startswith("#") else target
            predicate = self.make_predicate(structure, path, resource_name, name)
            return [PropertyMapping(False, field, name, predicate, target)]

        mappings: list[PropertyMapping] = []
        for idx, field_type in enumerate(types):
            code = field_type.code
            if not isinstance(code, str) or not code:
                return self._reject(f"{idx}th type entry not recognized", structure, field)

            curried_name = name + code[:1].upper() + code[1:] if curried and self.config.axes.v else name
            predicate = self.make_predicate(structure, path, resource_name, curried_name)

            if code in NESTED_STRUCTURE_TYPE_CODES:
                if curried:
                    return self._reject(
                        f"expected exactly one type for nested structure '{field.id}'",
                        structure,
                        field,
                    )
                nested = PropertyMapping(
                    False, field, curried_name, predicate, STRUCTURE_DEFN_ROOT + code
                )
                ctx.nesting.append(nested)
                await dispatch(visitor, TraversalEvent.ENTER, nested)
                # the nested type's own elements go into the nested shape; they
                # walk in a context of their own so nothing leaks into ours
                await self.visit_element_by_name(code, visitor, ctx)
                return []

            is_fhirpath = code.startswith(FHIRPATH_ROOT)
            trimmed_code = code[len(FHIRPATH_ROOT):] if is_fhirpath else code
            override = PROPERTY_OVERRIDES.get(field.id)
            is_scalar = (
                field.id == f"{structure.id}.value" and field.representation[:1] == ["xmlAttr"]
            ) or override is not None
            specializes = [] if path else _find_specialized(ancestors, curried_name)

            if is_scalar:
                if curried:
                    self.config.report(
                        FieldDefinitionError(
                            f"expected exactly one type for scalar '{field.id}'", structure, field
                        )
                    )
                scalar = override.scalar if override else self.scalar_type(structure, field, trimmed_code)
                scalar_predicate = (
                    predicate if override and override.normal_predicate else expand("fhir", "v")
                )
                mappings.append(
                    PropertyMapping(True, field, curried_name, scalar_predicate, scalar, None, specializes)
                )
            else:
                label = self.expect_fhir_type(structure, field, field_type) if is_fhirpath else code
                mappings.append(
                    PropertyMapping(
                        False, field, curried_name, predicate, label, field.binding, specializes
                    )
                )
        return mappings

    async def _close(self, ctx: TraversalContext, level: int, visitor: ModelVisitor) -> None:
        """Exit every open nesting level from ``level`` down, deepest first."""
        while len(ctx.nesting) > level:
            await dispatch(visitor, TraversalEvent.EXIT, ctx.nesting.pop())

    def _reject(self, msg: str, structure: Structure, field: StructureField) -> None:
        self.config.report(FieldDefinitionError(msg, structure, field))
        return None

    def _ancestor_mappings(self, structure: Structure) -> list[list[PropertyMapping]]:
        """Top-level mappings of the already walked ancestors, nearest ancestor first."""
        found: list[list[PropertyMapping]] = []
        seen = {structure.id}
        base = structure.base_name
        while base is not None and base in self._top_level and base not in seen:
            found.extend(self._top_level[base])
            seen.add(base)
            base = self._bases.get(base)
        return found

    def make_predicate(
        self, structure: Structure, path: list[str], resource_name: str, curried_name: str
    ) -> str:
        if structure.base_definition in DATATYPE_TYPES or structure.id in DATATYPE_LIKE:
            qualify = self.config.axes.d
        else:
            qualify = self.config.axes.r
        local_name = ".".join([resource_name, *path, curried_name]) if qualify else curried_name
        return expand("fhir", local_name)

    def scalar_type(self, structure: Structure, field: StructureField, type_code: str) -> ScalarType:
        if type_code in FHIR_SCALAR_TYPE_TO_XSD:
            return FHIR_SCALAR_TYPE_TO_XSD[type_code]

        # keep going with a placeholder so the rest of the schema still generates
        error = FieldDefinitionError(
            f"unknown mapping to XSD for target: {structure.id}, id: {field.id}, code: {type_code}",
            structure,
            field,
        )
        logger.warning(str(error))
        if self.config.error is not None:
            self.config.error(error)
        return ScalarType(placeholder_type_name(structure.id, field.id, type_code))

    def expect_fhir_type(self, structure: Structure, field: StructureField, field_type) -> str:
        if field_type.fhir_type is None:
            self.config.report(
                FieldDefinitionError(
                    f"Expected {field.id} {field_type.code} to have an fhir-type extension",
                    structure,
                    field,
                )
            )
            return UNKNOWN_FHIR_TYPE
        return field_type.fhir_type


def _path_of(field: StructureField) -> list[str]:
    return field.id.split(".")[1:-1]


def _find_specialized(
    ancestors: list[list[PropertyMapping]], name: str
) -> list[PropertyMapping]:
    """The ancestor mappings that own a constraint for property ``name``.

    An ancestor's mapping that is itself a specialization emitted nothing, so
    its own targets are returned in its place.
    """
    for mappings in ancestors:
        if any(m.property == name for m in mappings):
            owners: list[PropertyMapping] = []
            for m in mappings:
                for owner in m.specializes or [m]:
                    if owner not in owners:
                        owners.append(owner)
            return owners
    return []
