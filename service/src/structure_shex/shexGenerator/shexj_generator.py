"""Generate a ShExJ schema from FHIR StructureDefinitions and ValueSets.

The generator is the ShExJ implementation of the traversal protocol: a
``ModelWalker`` walks each StructureDefinition and calls ``enter``,
``element`` and ``exit`` here. A shape stack and a stack of triple expression
lists track the walker's nesting depth; a shape's expression is assembled
when its level is popped.

One instance holds the state of one generation session and must not be
shared between concurrent callers.
"""
from __future__ import annotations

import logging
from typing import Iterable

from pydantic import ValidationError

from ..data.config import GeneratorConfig
from ..data.loader import DefinitionLoader
from ..data.structure import Structure, parse_resource
from ..errors import StructureDefinitionError, StructureError
from ..model.shex import (
    Annotation,
    EachOf,
    NodeConstraint,
    ObjectLiteral,
    OneOf,
    Schema,
    Shape,
    ShapeAnd,
    ShapeDecl,
    ShapeExpr,
    ShapeOr,
    TripleConstraint,
    TripleExpr,
)
from ..prefixes import expand
from ..walker import ModelWalker, PropertyMapping
from ..walker.scalars import untyped_annotations
from .naming import list_name, make_card, value_set_name
from .terminology import TerminologyCompiler

logger = logging.getLogger(__name__)

BASE = expand("fhirs", "Base")
TREE_ROOT = expand("fhir", "treeRoot")

# open shapes, and the only ones without a positional index
PARENT_TYPES = ["Resource"]
RESOURCES_THAT_NEED_A_LINK = ["Reference"]
IGNORED_RESOURCE_TYPES = [
    "CodeSystem",
    "CapabilityStatement",
    "CompartmentDefinition",
    "OperationDefinition",
]


def empty_schema() -> Schema:
    return Schema(
        start=ShapeAnd(
            shapeExprs=[
                BASE,
                Shape(
                    expression=TripleConstraint(
                        predicate=expand("fhir", "nodeRole"),
                        valueExpr=NodeConstraint(values=[TREE_ROOT]),
                    )
                ),
            ]
        ),
        shapes=[],
    )


def index_constraint() -> TripleConstraint:
    return TripleConstraint(
        predicate=expand("fhir", "index"),
        valueExpr=NodeConstraint(datatype=expand("xsd", "integer")),
        min=0,
        max=1,
    )


class ShExJGenerator:
    def __init__(self, loader: DefinitionLoader, config: GeneratorConfig | None = None) -> None:
        self.loader = loader
        self.config = config if config is not None else GeneratorConfig()
        self.schema = empty_schema()
        # triple expressions of each open shape, innermost last
        self.te_list_stack: list[list[TripleExpr]] = []
        self.shape_stack: list[ShapeDecl] = []
        # top-level labels generated so far
        self.added: set[str] = set()
        self.model_walker = ModelWalker(loader, self.config)
        self.terminology = TerminologyCompiler(loader, self.config)
        # the constraint each mapping ended up in, for specializations
        self.mapping_constraints: dict[PropertyMapping, TripleExpr] = {}
        # rdf:List shapes to add: label -> element value expression
        self.lists: dict[str, ShapeExpr] = {}

    async def gen_shexj(self, sources: Iterable[dict], skip: Iterable[str] = ()) -> Schema:
        """Generate shapes for every ValueSet and StructureDefinition in the given Bundles."""
        skip = set(skip)
        release = self.config.fhir_release
        for source in sources:
            for entry in source.get("entry", []):
                resource = entry.get("resource") or {}
                gen_me = resource.get("id")
                if gen_me in skip:
                    continue

                resource_type = resource.get("resourceType")
                if resource_type in IGNORED_RESOURCE_TYPES:
                    continue
                try:
                    if resource_type == "ValueSet":
                        await self.gen_valueset(_parse_value_set(resource, release))
                    elif resource_type == "StructureDefinition":
                        await self.gen_shape(Structure(resource, release), root=True)
                    else:
                        raise StructureError(
                            f"Unknown resourceType: {resource_type} for {entry.get('fullUrl')}"
                        )
                except StructureError as e:
                    # drop the levels the aborted structure left open
                    del self.te_list_stack[:]
                    del self.shape_stack[:]
                    self.config.report(e)

        for label, value_expr in self.lists.items():
            self.schema.shapes.append(_list_shape(label, value_expr))

        # FHIR releases before 4.5 have no Base
        if self.schema.get(BASE) is None:
            self.schema.shapes.append(ShapeDecl(id=BASE, shapeExpr=Shape()))

        return self.schema

    async def gen_shape(self, structure: Structure, root: bool = True) -> ShExJGenerator:
        """Generate the shape for ``structure`` and the shapes of its nested elements."""
        label = expand("fhirs", structure.id)
        if label in self.added:
            logger.warning("shape %s already generated, skipping", label)
            return self

        closed = structure.id not in PARENT_TYPES
        parents = []
        if structure.base_definition is not None:
            if structure.base_name is None:
                raise StructureDefinitionError(
                    f"Unknown URL stem in {structure.base_definition}", structure.id
                )
            parents.append(expand("fhirs", structure.base_name))

        self.added.add(label)
        self.push_shape(label, closed, parents)

        rdf_type = expand("rdf", "type")
        if structure.kind == "resource":
            if closed:
                self.add(
                    self.make_triple_constraint(
                        rdf_type, NodeConstraint(values=[expand("fhir", structure.id)])
                    )
                )
                if root:
                    self.add(
                        self.make_triple_constraint(
                            expand("fhir", "nodeRole"),
                            NodeConstraint(values=[TREE_ROOT]),
                            {"min": 0, "max": 1},
                        )
                    )
            else:
                self.add(self.make_triple_constraint(rdf_type, None, {"min": 1, "max": -1}))

        if structure.id in self.config.add_types_to:
            self.add(
                self.make_triple_constraint(
                    rdf_type, NodeConstraint(nodeKind="iri"), {"min": 0, "max": 1}
                )
            )
        elif not self.config.axes.v:
            self.add(
                self.make_triple_constraint(
                    rdf_type,
                    NodeConstraint(values=[expand("fhir", structure.id)]),
                    {"min": 0, "max": 1},
                )
            )

        if structure.id in RESOURCES_THAT_NEED_A_LINK:
            self.add(
                self.make_triple_constraint(
                    expand("fhir", "link"), NodeConstraint(nodeKind="iri"), {"min": 0, "max": 1}
                )
            )

        await self.model_walker.visit_resource(structure, self)
        self.pop_shape(structure.id)
        return self

    async def enter(self, mapping: PropertyMapping) -> None:
        field = mapping.field
        shape_name = expand("fhirs", field.id)
        value_expr = shape_name
        parents = [expand("fhirs", code) for code in field.type_codes]
        if self.config.axes.c and field.is_multiple:
            value_expr = expand("fhirs", list_name(field.id))
            self.lists[value_expr] = shape_name

        self.add(
            self.index_triple_constraint(mapping, value_expr, make_card(field.min, field.max))
        )
        self.push_shape(shape_name, True, parents)

    async def element(self, mappings: list[PropertyMapping]) -> None:
        constraints: list[tuple[PropertyMapping, TripleConstraint]] = []
        for mapping in mappings:
            if mapping.specializes:
                # last write wins when several overrides hit the same constraint
                for specialized in mapping.specializes:
                    tc = self.mapping_constraints.get(specialized)
                    if tc is not None:
                        tc.predicate = mapping.predicate
                continue

            annotations = None
            if mapping.is_scalar:
                value_expr = _copy(mapping.type.value_expr)
                if mapping.type.untyped:
                    annotations = untyped_annotations()
            else:
                value_expr = self._complex_value_expr(mapping)
            tc = self.make_triple_constraint(mapping.predicate, value_expr, None, annotations)
            constraints.append((mapping, tc))

        if not constraints:
            return

        field = mappings[0].field
        card = make_card(field.min, field.max)
        if self.config.axes.v:
            if len(constraints) > 1:
                te = OneOf(expressions=[tc for _, tc in constraints], **card)
            else:
                te = constraints[0][1]
                for key, value in card.items():
                    setattr(te, key, value)
            for mapping, tc in constraints:
                self.mapping_constraints[mapping] = tc
        else:
            # without curried names every disjunct shares one predicate
            first = constraints[0][1]
            te = TripleConstraint(
                predicate=first.predicate,
                valueExpr=(
                    ShapeOr(shapeExprs=[tc.valueExpr for _, tc in constraints])
                    if len(constraints) > 1
                    else first.valueExpr
                ),
                annotations=first.annotations if len(constraints) == 1 else None,
                **card,
            )
            for mapping, _ in constraints:
                self.mapping_constraints[mapping] = te
        self.add(te)

    async def exit(self, mapping: PropertyMapping) -> None:
        self.pop_shape(mapping.field.id)

    def _complex_value_expr(self, mapping: PropertyMapping) -> ShapeExpr:
        type_name = mapping.type
        value_expr: ShapeExpr = expand("fhirs", type_name)

        binding = mapping.binding
        if binding is not None and binding.strength == "required":
            named = value_set_name(binding.value_set or "")
            if named is None:
                logger.warning(
                    '%s valueSet "%s" not an internal value set',
                    mapping.field.id,
                    binding.value_set,
                )
            else:
                value_set, version = named
                # distinct bindings of one base type get distinct list shapes
                type_name = f"{type_name}_AND_{value_set}"
                value_expr = self._bound_value_expr(value_expr, value_set, version)

        if self.config.axes.c and mapping.field.is_multiple:
            label = expand("fhirs", list_name(type_name))
            self.lists[label] = value_expr
            value_expr = label
        return value_expr

    def _bound_value_expr(self, value_expr: ShapeExpr, value_set: str, version: str | None) -> ShapeAnd:
        value_set_label = expand("fhirvs", value_set)
        if self.config.axes.h:
            return ShapeAnd(shapeExprs=[value_expr, value_set_label])

        annotations = None
        if self.config.add_value_set_version_annotation and version:
            annotations = [
                Annotation(
                    predicate=expand("fhir", "version"), object=ObjectLiteral(value=version)
                )
            ]
        return ShapeAnd(
            shapeExprs=[
                value_expr,
                Shape(
                    expression=TripleConstraint(
                        predicate=expand("fhir", "v"),
                        valueExpr=value_set_label,
                        annotations=annotations,
                    )
                ),
            ]
        )

    def push_shape(self, name: str, closed: bool, parents: list[str]) -> None:
        decl = ShapeDecl(
            id=name,
            shapeExpr=Shape(extends=parents or None, closed=True if closed else None),
        )
        self.te_list_stack.append([])
        self.schema.shapes.append(decl)
        self.shape_stack.append(decl)

    def pop_shape(self, name: str) -> None:
        te_list = self.te_list_stack.pop()
        shape = self.shape_stack.pop().shapeExpr
        # Base, and shapes like Age or SimpleQuantity that only restrict their parent
        if not te_list and name != "Base" and not shape.extends:
            raise StructureDefinitionError(
                f"Unexpected 0-length TE list when serializing {name}", name
            )
        if not self.config.axes.c and name not in PARENT_TYPES:
            te_list.append(index_constraint())

        if len(te_list) == 1:
            shape.expression = te_list[0]
        elif te_list:
            shape.expression = EachOf(expressions=te_list)

    def make_triple_constraint(
        self,
        predicate: str,
        value_expr: ShapeExpr | None = None,
        card: dict[str, int] | None = None,
        annotations: list[Annotation] | None = None,
    ) -> TripleConstraint:
        return TripleConstraint(
            predicate=predicate,
            valueExpr=value_expr,
            annotations=annotations,
            **(card or {}),
        )

    def index_triple_constraint(
        self,
        mapping: PropertyMapping,
        value_expr: ShapeExpr,
        card: dict[str, int] | None = None,
        annotations: list[Annotation] | None = None,
    ) -> TripleConstraint:
        tc = self.make_triple_constraint(mapping.predicate, value_expr, card, annotations)
        self.mapping_constraints[mapping] = tc
        return tc

    def add(self, te: TripleExpr) -> None:
        self.te_list_stack[-1].append(te)

    async def gen_valueset(self, value_set) -> ShExJGenerator:
        """Generate a NodeConstraint enumerating the codes of ``value_set``."""
        label = expand("fhirvs", value_set.id)
        if label in self.added:
            logger.warning("value set %s already generated, skipping", label)
            return self

        # some published value sets legitimately expand to nothing
        values = await self.terminology.parse_compose(value_set.compose)
        self.schema.shapes.append(
            ShapeDecl(id=label, shapeExpr=NodeConstraint(values=values or None))
        )
        self.added.add(label)
        return self


def _parse_value_set(resource: dict, release: str):
    try:
        return parse_resource(resource, release)
    except ValidationError as e:
        raise StructureDefinitionError(str(e), resource.get("id")) from e


def _copy(value_expr: ShapeExpr) -> ShapeExpr:
    return value_expr if isinstance(value_expr, str) else value_expr.model_copy(deep=True)


def _list_shape(label: str, value_expr: ShapeExpr) -> ShapeDecl:
    return ShapeDecl(
        id=label,
        shapeExpr=Shape(
            expression=EachOf(
                expressions=[
                    TripleConstraint(predicate=expand("rdf", "first"), valueExpr=value_expr),
                    TripleConstraint(
                        predicate=expand("rdf", "rest"),
                        valueExpr=ShapeOr(
                            shapeExprs=[NodeConstraint(values=[expand("rdf", "nil")]), label]
                        ),
                    ),
                ]
            )
        ),
    )
