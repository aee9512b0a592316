import asyncio
import json
from pathlib import Path

import pytest

from structure_shex.data.config import GeneratorConfig
from structure_shex.data.loader import BundleDefinitionLoader
from structure_shex.model.shex import EachOf, OneOf, Shape, TripleConstraint
from structure_shex.prefixes import expand
from structure_shex.shexGenerator.shexj_generator import ShExJGenerator

FILES_DIR = Path(__file__).parent / "files"
DEFINITIONS = FILES_DIR / "definitions.json"

SD_ROOT = "http://hl7.org/fhir/StructureDefinition/"


def load_definitions() -> dict:
    return json.loads(DEFINITIONS.read_text(encoding="utf-8"))


def element(id: str, *codes: str, min: int = 0, max: str = "1", **extra) -> dict:
    elem = {"id": id, "path": id, "min": min, "max": max}
    if codes:
        elem["type"] = [{"code": code} for code in codes]
    elem.update(extra)
    return elem


def structure_definition(
    id: str,
    elements: list[dict],
    base: str | None = "DomainResource",
    kind: str = "resource",
) -> dict:
    sd = {
        "resourceType": "StructureDefinition",
        "id": id,
        "url": SD_ROOT + id,
        "name": id,
        "status": "active",
        "kind": kind,
        "abstract": False,
        "type": id,
        "differential": {"element": [{"id": id, "path": id}] + elements},
    }
    if base is not None:
        sd["baseDefinition"] = base if "/" in base else SD_ROOT + base
    return sd


def bundle(*resources: dict) -> dict:
    return {
        "resourceType": "Bundle",
        "type": "collection",
        "entry": [{"resource": r} for r in resources],
    }


def generate(sources: list[dict], config: GeneratorConfig | None = None, loader=None):
    loader = loader or BundleDefinitionLoader(sources, (config or GeneratorConfig()).fhir_release)
    generator = ShExJGenerator(loader, config)
    return asyncio.run(generator.gen_shexj(loader.sources))


def shape_of(schema, name: str) -> Shape:
    decl = schema.get(expand("fhirs", name))
    assert decl is not None, f"no shape for {name}"
    return decl.shapeExpr


def triple_constraints(shape: Shape) -> list[TripleConstraint]:
    """All triple constraints of a shape, including those inside EachOf/OneOf."""
    found = []

    def collect(expr):
        if isinstance(expr, TripleConstraint):
            found.append(expr)
        elif isinstance(expr, (EachOf, OneOf)):
            for e in expr.expressions:
                collect(e)

    if shape.expression is not None:
        collect(shape.expression)
    return found


def constraint_for(shape: Shape, predicate: str) -> TripleConstraint:
    matches = [tc for tc in triple_constraints(shape) if tc.predicate == predicate]
    assert len(matches) == 1, f"expected one constraint for {predicate}, got {len(matches)}"
    return matches[0]


@pytest.fixture
def definitions() -> dict:
    return load_definitions()


@pytest.fixture
def loader(definitions) -> BundleDefinitionLoader:
    return BundleDefinitionLoader([definitions])


def dump(expr):
    """Comparable form of a shape expression, ignoring unset attributes."""
    if expr is None or isinstance(expr, str):
        return expr
    return expr.model_dump(exclude_none=True)
