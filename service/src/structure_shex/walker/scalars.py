"""XML Schema encodings for FHIR primitive values."""

from __future__ import annotations

from dataclasses import dataclass

from ..model.shex import Annotation, NodeConstraint, ShapeExpr, ShapeOr
from ..prefixes import S2J, expand


def _xsd(local_name: str) -> NodeConstraint:
    return NodeConstraint(datatype=expand("xsd", local_name))


@dataclass(frozen=True, slots=True)
class ScalarType:
    value_expr: ShapeExpr
    # disjunctions of datatypes can't be expressed as a single typed literal
    untyped: bool = False


@dataclass(frozen=True, slots=True)
class PropertyOverride:
    scalar: ScalarType
    normal_predicate: bool = False


def untyped_annotations() -> list[Annotation]:
    return [Annotation(predicate=S2J + "property", object=S2J + "unTyped")]


# keyed by element id
PROPERTY_OVERRIDES: dict[str, PropertyOverride] = {
    "uri.value": PropertyOverride(ScalarType(_xsd("anyURI"))),
    "base64Binary.value": PropertyOverride(ScalarType(_xsd("base64Binary"))),
    "instant.value": PropertyOverride(ScalarType(_xsd("dateTime"))),
    "dateTime.value": PropertyOverride(
        ScalarType(
            ShapeOr(
                shapeExprs=[_xsd("dateTime"), _xsd("date"), _xsd("gYearMonth"), _xsd("gYear")]
            ),
            untyped=True,
        )
    ),
    "integer64.value": PropertyOverride(ScalarType(_xsd("long"))),
    # XHTML narrative keeps its own predicate
    "Narrative.div": PropertyOverride(ScalarType(_xsd("string")), normal_predicate=True),
}

# keyed by FHIRPath system type with the System. prefix trimmed
FHIR_SCALAR_TYPE_TO_XSD: dict[str, ScalarType] = {
    "Boolean": ScalarType(_xsd("boolean")),
    "String": ScalarType(_xsd("string")),
    "Date": ScalarType(
        ShapeOr(shapeExprs=[_xsd("date"), _xsd("gYearMonth"), _xsd("gYear")]),
        untyped=True,
    ),
    "Decimal": ScalarType(ShapeOr(shapeExprs=[_xsd("decimal"), _xsd("double")]), untyped=True),
    "Integer": ScalarType(_xsd("integer")),
    "Time": ScalarType(_xsd("time")),
    "Instant": ScalarType(_xsd("dateTime")),
    "DateTime": ScalarType(_xsd("dateTime")),
}


def placeholder_type_name(structure_id: str, field_id: str, code: str) -> str:
    return f"UNKNOWN-{structure_id}-{field_id}-{code}"
