"""ShExJ schema models.

Shape expressions form a tagged union discriminated by ``type``; a bare string
is a reference to a shape declared in the same schema. Consumers match on the
concrete classes and reject anything else (see ``nesting.py``).
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

SHEX_CONTEXT = "http://www.w3.org/ns/shex.jsonld"


class ObjectLiteral(BaseModel):
    value: str
    type: str | None = None


class Annotation(BaseModel):
    type: Literal["Annotation"] = "Annotation"
    predicate: str
    object: Union[str, ObjectLiteral]


class NodeConstraint(BaseModel):
    type: Literal["NodeConstraint"] = "NodeConstraint"
    nodeKind: Literal["iri", "bnode", "nonliteral", "literal"] | None = None
    datatype: str | None = None
    values: list[Union[str, ObjectLiteral]] | None = None


class Shape(BaseModel):
    type: Literal["Shape"] = "Shape"
    closed: bool | None = None
    extends: list[ShapeExpr] | None = None
    expression: TripleExpr | None = None


class ShapeOr(BaseModel):
    type: Literal["ShapeOr"] = "ShapeOr"
    shapeExprs: list[ShapeExpr]


class ShapeAnd(BaseModel):
    type: Literal["ShapeAnd"] = "ShapeAnd"
    shapeExprs: list[ShapeExpr]


class ShapeNot(BaseModel):
    type: Literal["ShapeNot"] = "ShapeNot"
    shapeExpr: ShapeExpr


class TripleConstraint(BaseModel):
    type: Literal["TripleConstraint"] = "TripleConstraint"
    predicate: str
    valueExpr: ShapeExpr | None = None
    min: int | None = None
    max: int | None = None
    annotations: list[Annotation] | None = None


class EachOf(BaseModel):
    type: Literal["EachOf"] = "EachOf"
    expressions: list[TripleExpr]
    min: int | None = None
    max: int | None = None


class OneOf(BaseModel):
    type: Literal["OneOf"] = "OneOf"
    expressions: list[TripleExpr]
    min: int | None = None
    max: int | None = None


ShapeExprObject = Annotated[
    Union[Shape, NodeConstraint, ShapeOr, ShapeAnd, ShapeNot],
    Field(discriminator="type"),
]
ShapeExpr = Union[str, ShapeExprObject]
TripleExpr = Annotated[
    Union[TripleConstraint, EachOf, OneOf],
    Field(discriminator="type"),
]


class ShapeDecl(BaseModel):
    type: Literal["ShapeDecl"] = "ShapeDecl"
    id: str
    shapeExpr: ShapeExpr


class Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["Schema"] = "Schema"
    start: ShapeExpr | None = None
    shapes: list[ShapeDecl] = []
    context: str = Field(default=SHEX_CONTEXT, alias="@context")

    def get(self, label: str) -> ShapeDecl | None:
        for decl in self.shapes:
            if decl.id == label:
                return decl
        return None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


for _model in (
    Annotation,
    NodeConstraint,
    Shape,
    ShapeOr,
    ShapeAnd,
    ShapeNot,
    TripleConstraint,
    EachOf,
    OneOf,
    ShapeDecl,
    Schema,
):
    _model.model_rebuild()
