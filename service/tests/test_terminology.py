import asyncio

import pytest

from structure_shex.data.config import GeneratorConfig
from structure_shex.data.loader import BundleDefinitionLoader
from structure_shex.data.structure import parse_resource
from structure_shex.errors import DefinitionLookupError
from structure_shex.shexGenerator.shexj_generator import ShExJGenerator
from structure_shex.shexGenerator.terminology import TerminologyCompiler

from conftest import bundle, generate

NESTED_CS = {
    "resourceType": "CodeSystem",
    "id": "nested",
    "url": "http://example.org/CodeSystem/nested",
    "status": "active",
    "content": "complete",
    "concept": [
        {
            "code": "a",
            "concept": [
                {"code": "a1"},
                {"code": "a2", "concept": [{"code": "a2x"}]},
            ],
        },
        {"code": "b"},
    ],
}


def value_set(*includes: dict, id: str = "test-vs") -> dict:
    return {
        "resourceType": "ValueSet",
        "id": id,
        "url": f"http://hl7.org/fhir/ValueSet/{id}",
        "status": "active",
        "compose": {"include": list(includes)},
    }


def compile_codes(vs: dict, config: GeneratorConfig | None = None, *sources: dict) -> list[str]:
    loader = BundleDefinitionLoader(list(sources))
    compiler = TerminologyCompiler(loader, config or GeneratorConfig())
    literals = asyncio.run(compiler.parse_compose(parse_resource(vs).compose))
    return [literal.value for literal in literals]


def test_nested_concepts_are_flattened():
    vs = value_set({"system": "http://example.org/CodeSystem/nested"})

    assert compile_codes(vs, None, NESTED_CS) == ["a", "a1", "a2", "a2x", "b"]


def test_explicit_concepts_are_used_verbatim():
    vs = value_set(
        {
            "system": "http://example.org/CodeSystem/nested",
            "concept": [{"code": "b"}, {"code": "zz"}],
        }
    )

    assert compile_codes(vs, None, NESTED_CS) == ["b", "zz"]


def test_codes_are_deduplicated_in_first_seen_order():
    vs = value_set(
        {"system": "http://example.org/other", "concept": [{"code": "b"}, {"code": "a"}]},
        {"system": "http://example.org/CodeSystem/nested"},
    )

    assert compile_codes(vs, None, NESTED_CS) == ["b", "a", "a1", "a2", "a2x"]


def test_missing_code_system_is_recorded():
    config = GeneratorConfig(missing={})
    vs = value_set({"system": "http://example.org/missing"})

    assert compile_codes(vs, config) == []
    assert config.missing == {"codesystems": {"http://example.org/missing"}}


def test_missing_code_system_raises_by_default():
    vs = value_set({"system": "http://example.org/missing"})

    with pytest.raises(DefinitionLookupError):
        compile_codes(vs)


def test_missing_code_system_is_logged(caplog):
    vs = value_set({"system": "http://example.org/missing"})

    compile_codes(vs, GeneratorConfig(log_missing=True))

    assert "http://example.org/missing" in caplog.text


def test_empty_value_set_has_no_values():
    config = GeneratorConfig(missing={})
    vs = value_set({"system": "http://example.org/missing"}, id="empty")

    schema = generate([bundle(vs)], config)

    decl = schema.get("http://hl7.org/fhir/ValueSet/empty")
    assert decl.shapeExpr.values is None
    assert "values" not in decl.shapeExpr.model_dump(exclude_none=True)


def test_gen_valueset_from_bundle():
    vs = value_set({"system": "http://example.org/CodeSystem/nested"}, id="nested-vs")
    loader = BundleDefinitionLoader([bundle(NESTED_CS, vs)])
    generator = ShExJGenerator(loader, GeneratorConfig())

    schema = asyncio.run(generator.gen_shexj(loader.sources))

    decl = schema.get("http://hl7.org/fhir/ValueSet/nested-vs")
    assert [v.value for v in decl.shapeExpr.values] == ["a", "a1", "a2", "a2x", "b"]
    assert "http://hl7.org/fhir/ValueSet/nested-vs" in generator.added


def test_value_set_in_two_sources_is_generated_once(caplog):
    vs = value_set({"system": "http://example.org/CodeSystem/nested"}, id="nested-vs")

    schema = generate([bundle(NESTED_CS, vs), bundle(vs)])

    ids = [decl.id for decl in schema.shapes]
    assert ids.count("http://hl7.org/fhir/ValueSet/nested-vs") == 1
    assert "already generated" in caplog.text
