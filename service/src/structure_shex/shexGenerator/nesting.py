"""Inline nested-element shapes that are referenced exactly once.

The generator declares one top-level shape per BackboneElement (e.g.
``fhirs:MedicationRequest.substitution``). When such a shape is used only once
it reads better inlined at its point of use. Only labels in the ``fhirs:``
namespace whose local name contains a ``.`` are considered; shapes that refer
back to themselves stay references. Applying ``nest_shapes`` to its own output
changes nothing.
"""
from __future__ import annotations

import logging
from collections import Counter

from ..model.shex import (
    EachOf,
    NodeConstraint,
    OneOf,
    Schema,
    Shape,
    ShapeAnd,
    ShapeDecl,
    ShapeExpr,
    ShapeNot,
    ShapeOr,
    TripleConstraint,
    TripleExpr,
)
from ..prefixes import shorten

logger = logging.getLogger(__name__)


def is_nestable(label: str) -> bool:
    prefix, local = shorten(label)
    return prefix == "fhirs" and "." in local


def nest_shapes(schema: Schema) -> Schema:
    """A copy of ``schema`` with singly referenced nested shapes inlined."""
    return _ShapeNester(schema).nest()


class _ShapeNester:
    def __init__(self, schema: Schema) -> None:
        self.schema = schema
        self.decls = {decl.id: decl for decl in schema.shapes}
        self.counts: Counter[str] = Counter()
        if schema.start is not None:
            self.count_shape_expr(schema.start)
        for decl in schema.shapes:
            self.count_shape_expr(decl.shapeExpr)

        self.candidates = {
            label
            for label, count in self.counts.items()
            if count == 1 and label in self.decls and is_nestable(label)
        }
        self.inlined: set[str] = set()
        # candidates that had to stay top-level, never inlined afterwards
        self.kept: set[str] = set()

    def nest(self) -> Schema:
        start = self.rewrite_shape_expr(self.schema.start, ()) if self.schema.start is not None else None

        rewritten: dict[str, ShapeDecl] = {}
        for decl in self.schema.shapes:
            if decl.id not in self.candidates:
                rewritten[decl.id] = self.rewrite_decl(decl)

        # candidates not reachable from any other shape, e.g. only referenced by themselves
        for decl in self.schema.shapes:
            if decl.id in self.candidates and decl.id not in self.inlined:
                self.kept.add(decl.id)
                rewritten[decl.id] = self.rewrite_decl(decl)

        logger.debug("inlined %d shapes", len(self.inlined))
        return self.schema.model_copy(
            update={
                "start": start,
                "shapes": [rewritten[decl.id] for decl in self.schema.shapes if decl.id in rewritten],
            }
        )

    def rewrite_decl(self, decl: ShapeDecl) -> ShapeDecl:
        return ShapeDecl(id=decl.id, shapeExpr=self.rewrite_shape_expr(decl.shapeExpr, (decl.id,)))

    def count_shape_expr(self, expr: ShapeExpr) -> None:
        if isinstance(expr, str):
            self.counts[expr] += 1
        elif isinstance(expr, Shape):
            for parent in expr.extends or []:
                self.count_shape_expr(parent)
            if expr.expression is not None:
                self.count_triple_expr(expr.expression)
        elif isinstance(expr, (ShapeAnd, ShapeOr)):
            for member in expr.shapeExprs:
                self.count_shape_expr(member)
        elif isinstance(expr, ShapeNot):
            self.count_shape_expr(expr.shapeExpr)
        elif isinstance(expr, NodeConstraint):
            pass
        else:
            raise TypeError(f"unexpected shape expression {type(expr).__name__}")

    def count_triple_expr(self, expr: TripleExpr) -> None:
        if isinstance(expr, TripleConstraint):
            if expr.valueExpr is not None:
                self.count_shape_expr(expr.valueExpr)
        elif isinstance(expr, (EachOf, OneOf)):
            for member in expr.expressions:
                self.count_triple_expr(member)
        else:
            raise TypeError(f"unexpected triple expression {type(expr).__name__}")

    def rewrite_shape_expr(self, expr: ShapeExpr, stack: tuple[str, ...]) -> ShapeExpr:
        if isinstance(expr, str):
            if expr in self.candidates and expr not in stack and expr not in self.kept:
                self.inlined.add(expr)
                return self.rewrite_shape_expr(self.decls[expr].shapeExpr, stack + (expr,))
            return expr
        if isinstance(expr, Shape):
            return expr.model_copy(
                deep=True,
                update={
                    "extends": (
                        [self.rewrite_shape_expr(p, stack) for p in expr.extends]
                        if expr.extends is not None
                        else None
                    ),
                    "expression": (
                        self.rewrite_triple_expr(expr.expression, stack)
                        if expr.expression is not None
                        else None
                    ),
                },
            )
        if isinstance(expr, (ShapeAnd, ShapeOr)):
            return expr.model_copy(
                deep=True,
                update={"shapeExprs": [self.rewrite_shape_expr(m, stack) for m in expr.shapeExprs]},
            )
        if isinstance(expr, ShapeNot):
            return expr.model_copy(
                deep=True, update={"shapeExpr": self.rewrite_shape_expr(expr.shapeExpr, stack)}
            )
        if isinstance(expr, NodeConstraint):
            return expr.model_copy(deep=True)
        raise TypeError(f"unexpected shape expression {type(expr).__name__}")

    def rewrite_triple_expr(self, expr: TripleExpr, stack: tuple[str, ...]) -> TripleExpr:
        if isinstance(expr, TripleConstraint):
            return expr.model_copy(
                deep=True,
                update={
                    "valueExpr": (
                        self.rewrite_shape_expr(expr.valueExpr, stack)
                        if expr.valueExpr is not None
                        else None
                    )
                },
            )
        if isinstance(expr, (EachOf, OneOf)):
            return expr.model_copy(
                deep=True,
                update={"expressions": [self.rewrite_triple_expr(m, stack) for m in expr.expressions]},
            )
        raise TypeError(f"unexpected triple expression {type(expr).__name__}")
