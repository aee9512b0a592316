import asyncio
import json

import pytest

from structure_shex.data.config import GeneratorConfig
from structure_shex.data.loader import BundleDefinitionLoader
from structure_shex.errors import FieldDefinitionError, StructureDefinitionError, StructureError
from structure_shex.model.shex import (
    EachOf,
    NodeConstraint,
    OneOf,
    Shape,
    ShapeAnd,
    ShapeOr,
    TripleConstraint,
)
from structure_shex.prefixes import expand
from structure_shex.shexGenerator.shexj_generator import ShExJGenerator

from conftest import (
    bundle,
    constraint_for,
    dump,
    element,
    generate,
    load_definitions,
    shape_of,
    structure_definition,
    triple_constraints,
)

FHIR = "http://hl7.org/fhir/"
FHIRS = "http://hl7.org/fhir/shape/"
FHIRVS = "http://hl7.org/fhir/ValueSet/"
XSD = "http://www.w3.org/2001/XMLSchema#"
RDF = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"


def test_start_and_base():
    schema = generate([load_definitions()])

    assert isinstance(schema.start, ShapeAnd)
    assert schema.start.shapeExprs[0] == FHIRS + "Base"
    assert schema.get(FHIRS + "Base") is not None


def test_base_is_added_when_missing():
    sd = structure_definition("Thing", [element("Thing.name", "string")])

    schema = generate([bundle(sd)])

    assert schema.shapes[-1].id == FHIRS + "Base"
    assert dump(schema.shapes[-1].shapeExpr) == dump(Shape())


def test_medication_request():
    schema = generate([load_definitions()])
    shape = shape_of(schema, "MedicationRequest")

    assert shape.closed
    assert shape.extends == [FHIRS + "DomainResource"]

    rdf_type = constraint_for(shape, RDF + "type")
    assert dump(rdf_type.valueExpr) == dump(NodeConstraint(values=[FHIR + "MedicationRequest"]))
    assert (rdf_type.min, rdf_type.max) == (None, None)

    node_role = constraint_for(shape, FHIR + "nodeRole")
    assert (node_role.min, node_role.max) == (0, 1)

    identifier = constraint_for(shape, FHIR + "MedicationRequest.identifier")
    assert identifier.valueExpr == FHIRS + "Identifier"
    assert (identifier.min, identifier.max) == (0, -1)

    status = constraint_for(shape, FHIR + "MedicationRequest.status")
    assert (status.min, status.max) == (None, None)
    assert dump(status.valueExpr) == dump(ShapeAnd(
        shapeExprs=[
            FHIRS + "code",
            Shape(
                expression=TripleConstraint(
                    predicate=FHIR + "v", valueExpr=FHIRVS + "medicationrequest-status"
                )
            ),
        ]
    ))

    substitution = constraint_for(shape, FHIR + "MedicationRequest.substitution")
    assert substitution.valueExpr == FHIRS + "MedicationRequest.substitution"
    assert (substitution.min, substitution.max) == (0, 1)

    index = constraint_for(shape, FHIR + "index")
    assert dump(index.valueExpr) == dump(NodeConstraint(datatype=XSD + "integer"))


def test_medication_request_humane_binding():
    schema = generate([load_definitions()], GeneratorConfig(axes="RDVcH"))
    shape = shape_of(schema, "MedicationRequest")

    status = constraint_for(shape, FHIR + "MedicationRequest.status")
    assert dump(status.valueExpr) == dump(ShapeAnd(
        shapeExprs=[FHIRS + "code", FHIRVS + "medicationrequest-status"]
    ))


def test_value_set_version_annotation():
    config = GeneratorConfig(add_value_set_version_annotation=True)
    schema = generate([load_definitions()], config)
    shape = shape_of(schema, "MedicationRequest")

    status = constraint_for(shape, FHIR + "MedicationRequest.status")
    annotation = status.valueExpr.shapeExprs[1].expression.annotations[0]
    assert annotation.predicate == FHIR + "version"
    assert annotation.object.value == "4.3.0"


def test_nested_shape_and_choice():
    schema = generate([load_definitions()])
    shape = shape_of(schema, "MedicationRequest.substitution")

    assert shape.closed
    assert shape.extends == [FHIRS + "BackboneElement"]
    assert isinstance(shape.expression, EachOf)

    allowed = shape.expression.expressions[0]
    assert isinstance(allowed, OneOf)
    assert (allowed.min, allowed.max) == (None, None)
    assert [tc.predicate for tc in allowed.expressions] == [
        FHIR + "MedicationRequest.substitution.allowedBoolean",
        FHIR + "MedicationRequest.substitution.allowedCodeableConcept",
    ]
    assert [tc.valueExpr for tc in allowed.expressions] == [
        FHIRS + "boolean",
        FHIRS + "CodeableConcept",
    ]

    reason = constraint_for(shape, FHIR + "MedicationRequest.substitution.reason")
    assert (reason.min, reason.max) == (0, 1)


def test_choice_without_v_axis_is_one_constraint():
    schema = generate([load_definitions()], GeneratorConfig(axes="RDvch"))
    shape = shape_of(schema, "MedicationRequest.substitution")

    allowed = constraint_for(shape, FHIR + "MedicationRequest.substitution.allowed")
    assert dump(allowed.valueExpr) == dump(ShapeOr(shapeExprs=[FHIRS + "boolean", FHIRS + "CodeableConcept"]))
    assert (allowed.min, allowed.max) == (None, None)


def test_without_v_axis_types_are_optional_constraints():
    schema = generate([load_definitions()], GeneratorConfig(axes="RDvch"))
    shape = shape_of(schema, "Identifier")

    rdf_type = constraint_for(shape, RDF + "type")
    assert dump(rdf_type.valueExpr) == dump(NodeConstraint(values=[FHIR + "Identifier"]))
    assert (rdf_type.min, rdf_type.max) == (0, 1)


def test_add_types_to():
    schema = generate([load_definitions()], GeneratorConfig(add_types_to=["Identifier"]))
    shape = shape_of(schema, "Identifier")

    rdf_type = constraint_for(shape, RDF + "type")
    assert dump(rdf_type.valueExpr) == dump(NodeConstraint(nodeKind="iri"))


def test_cardinality_law():
    sd = structure_definition(
        "Thing",
        [
            element("Thing.a", "string", min=1, max="1"),
            element("Thing.b", "string", min=0, max="1"),
            element("Thing.c", "string", min=0, max="*"),
            element("Thing.d", "string", min=2, max="5"),
        ],
    )

    shape = shape_of(generate([bundle(sd)]), "Thing")

    cards = {
        tc.predicate[len(FHIR):]: (tc.min, tc.max)
        for tc in triple_constraints(shape)
        if tc.predicate.startswith(FHIR + "Thing.")
    }
    assert cards == {
        "Thing.a": (None, None),
        "Thing.b": (0, 1),
        "Thing.c": (0, -1),
        "Thing.d": (2, 5),
    }


def test_scalars():
    schema = generate([load_definitions()])

    value = constraint_for(shape_of(schema, "boolean"), FHIR + "v")
    assert dump(value.valueExpr) == dump(NodeConstraint(datatype=XSD + "boolean"))
    assert (value.min, value.max) == (0, 1)


def test_untyped_scalar_is_annotated():
    sd = structure_definition(
        "decimal",
        [
            element(
                "decimal.value",
                "http://hl7.org/fhirpath/System.Decimal",
                representation=["xmlAttr"],
            )
        ],
        base="PrimitiveType",
        kind="primitive-type",
    )

    value = constraint_for(shape_of(generate([bundle(sd)]), "decimal"), FHIR + "v")

    assert isinstance(value.valueExpr, ShapeOr)
    assert value.annotations[0].object == "http://shex2json.example/map#unTyped"


def test_unknown_scalar_with_error_sink():
    errors = []
    sd = structure_definition(
        "foo",
        [
            element(
                "foo.value",
                "http://hl7.org/fhirpath/System.Quantity",
                representation=["xmlAttr"],
            )
        ],
        base="PrimitiveType",
        kind="primitive-type",
    )
    other = structure_definition("Thing", [element("Thing.name", "string")])

    schema = generate([bundle(sd, other)], GeneratorConfig(error=errors.append))

    value = constraint_for(shape_of(schema, "foo"), FHIR + "v")
    assert value.valueExpr == "UNKNOWN-foo-foo.value-Quantity"
    name = constraint_for(shape_of(schema, "Thing"), FHIR + "Thing.name")
    assert name.valueExpr == FHIRS + "string"
    assert len(errors) == 1
    assert isinstance(errors[0], FieldDefinitionError)


def test_list_emulation():
    schema = generate([load_definitions()], GeneratorConfig(axes="RDVCh"))
    shape = shape_of(schema, "MedicationRequest")

    identifier = constraint_for(shape, FHIR + "MedicationRequest.identifier")
    assert identifier.valueExpr == FHIRS + "OneOrMore_Identifier"
    assert all(tc.predicate != FHIR + "index" for tc in triple_constraints(shape))

    list_shape = shape_of(schema, "OneOrMore_Identifier")
    first, rest = list_shape.expression.expressions
    assert first.predicate == RDF + "first"
    assert first.valueExpr == FHIRS + "Identifier"
    assert rest.predicate == RDF + "rest"
    assert dump(rest.valueExpr) == dump(ShapeOr(
        shapeExprs=[NodeConstraint(values=[RDF + "nil"]), FHIRS + "OneOrMore_Identifier"]
    ))


def test_list_emulation_for_bound_types():
    sd = structure_definition(
        "Thing",
        [
            element(
                "Thing.status",
                "code",
                max="*",
                binding={
                    "strength": "required",
                    "valueSet": "http://terminology.hl7.org/ValueSet/thing-status",
                },
            )
        ],
    )

    schema = generate([bundle(sd)], GeneratorConfig(axes="RDVCh"))

    status = constraint_for(shape_of(schema, "Thing"), FHIR + "Thing.status")
    assert status.valueExpr == FHIRS + "OneOrMore_code_AND_hl7-thing-status"
    list_shape = shape_of(schema, "OneOrMore_code_AND_hl7-thing-status")
    assert list_shape.expression.expressions[0].valueExpr.shapeExprs[0] == FHIRS + "code"


def test_unknown_value_set_stem_is_not_bound(caplog):
    sd = structure_definition(
        "Thing",
        [
            element(
                "Thing.status",
                "code",
                binding={"strength": "required", "valueSet": "http://example.org/vs"},
            )
        ],
    )

    schema = generate([bundle(sd)])

    status = constraint_for(shape_of(schema, "Thing"), FHIR + "Thing.status")
    assert status.valueExpr == FHIRS + "code"
    assert "not an internal value set" in caplog.text


def test_resource_is_open_without_index():
    schema = generate([load_definitions()])
    shape = shape_of(schema, "Resource")

    assert shape.closed is None
    rdf_type = constraint_for(shape, RDF + "type")
    assert rdf_type.valueExpr is None
    assert (rdf_type.min, rdf_type.max) == (1, -1)
    assert all(tc.predicate != FHIR + "index" for tc in triple_constraints(shape))


def test_reference_gets_link():
    sd = structure_definition(
        "Reference", [element("Reference.display", "string")], base="DataType", kind="complex-type"
    )

    shape = shape_of(generate([bundle(sd)]), "Reference")

    link = constraint_for(shape, FHIR + "link")
    assert dump(link.valueExpr) == dump(NodeConstraint(nodeKind="iri"))


def test_value_set_shape():
    schema = generate([load_definitions()])

    decl = schema.get(FHIRVS + "medicationrequest-status")
    assert isinstance(decl.shapeExpr, NodeConstraint)
    assert [v.value for v in decl.shapeExpr.values][:3] == ["active", "on-hold", "cancelled"]


def test_skip_and_ignored_resources():
    definitions = load_definitions()
    loader = BundleDefinitionLoader([definitions])
    generator = ShExJGenerator(loader, GeneratorConfig())

    schema = asyncio.run(generator.gen_shexj(loader.sources, skip=["MedicationRequest"]))

    assert schema.get(FHIRS + "MedicationRequest") is None
    assert schema.get(FHIRS + "MedicationRequest.substitution") is None
    # CodeSystems produce no shapes of their own
    assert all("CodeSystem" not in decl.id for decl in schema.shapes)


def test_unknown_resource_type():
    patient = {"resourceType": "Patient", "id": "example"}

    with pytest.raises(StructureError, match="Unknown resourceType: Patient"):
        generate([bundle(patient)])


def test_unknown_resource_type_collected():
    errors = []
    patient = {"resourceType": "Patient", "id": "example"}
    sd = structure_definition("Thing", [element("Thing.name", "string")])

    schema = generate([bundle(patient, sd)], GeneratorConfig(error=errors.append))

    assert len(errors) == 1
    assert schema.get(FHIRS + "Thing") is not None


def test_empty_shape_is_an_error():
    sd = structure_definition("Nothing", [], base=None, kind="complex-type")

    with pytest.raises(StructureDefinitionError, match="0-length TE list"):
        generate([bundle(sd)])


def test_specialization_retargets_ancestor_constraint():
    parent = structure_definition("Parent", [element("Parent.foo", "string")])
    child = structure_definition("Child", [element("Child.foo", "code")], base="Parent")

    schema = generate([bundle(parent, child)])

    parent_shape = shape_of(schema, "Parent")
    assert constraint_for(parent_shape, FHIR + "Child.foo").valueExpr == FHIRS + "string"
    assert all(tc.predicate != FHIR + "Parent.foo" for tc in triple_constraints(parent_shape))
    child_shape = shape_of(schema, "Child")
    assert all(tc.predicate != FHIR + "Child.foo" for tc in triple_constraints(child_shape))


def test_specialization_last_write_wins():
    parent = structure_definition("Parent", [element("Parent.foo", "string")])
    child = structure_definition("Child", [element("Child.foo", "code")], base="Parent")
    other = structure_definition("Other", [element("Other.foo", "uri")], base="Parent")

    schema = generate([bundle(parent, child, other)])

    parent_shape = shape_of(schema, "Parent")
    assert constraint_for(parent_shape, FHIR + "Other.foo").valueExpr == FHIRS + "string"


def test_specialization_through_two_levels():
    parent = structure_definition("Parent", [element("Parent.foo", "string")])
    child = structure_definition("Child", [element("Child.foo", "code")], base="Parent")
    grand = structure_definition("Grand", [element("Grand.foo", "uri")], base="Child")

    schema = generate([bundle(parent, child, grand)])

    parent_shape = shape_of(schema, "Parent")
    assert constraint_for(parent_shape, FHIR + "Grand.foo").valueExpr == FHIRS + "string"
    assert all(tc.predicate != FHIR + "Child.foo" for tc in triple_constraints(parent_shape))
    for name in ("Child", "Grand"):
        predicates = [tc.predicate for tc in triple_constraints(shape_of(schema, name))]
        assert FHIR + f"{name}.foo" not in predicates


def test_generation_is_deterministic():
    first = generate([load_definitions()]).to_json()
    second = generate([load_definitions()]).to_json()

    assert json.dumps(first) == json.dumps(second)


def test_schema_json():
    schema = generate([load_definitions()])
    shexj = schema.to_json()

    assert shexj["type"] == "Schema"
    assert shexj["@context"] == "http://www.w3.org/ns/shex.jsonld"
    assert shexj["start"]["type"] == "ShapeAnd"
    decl = next(s for s in shexj["shapes"] if s["id"] == FHIRS + "MedicationRequest")
    assert decl["shapeExpr"]["type"] == "Shape"
