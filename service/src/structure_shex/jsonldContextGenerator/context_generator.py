"""JSON-LD 1.1 contexts for FHIR resources and datatypes.

Second implementation of the traversal protocol: the walker's mappings become
JSON-LD term definitions. Complex properties point at the context document of
their type (``<Type>.context.jsonld``), nested BackboneElements get an inline
context seeded from the nested type's own context.
"""
from __future__ import annotations

import copy
import logging
from typing import Any

from ..data.config import GeneratorConfig
from ..data.loader import DefinitionLoader
from ..data.structure import Structure
from ..errors import DefinitionLookupError, StructureCycleError, StructureDefinitionError
from ..model.shex import NodeConstraint
from ..prefixes import FHIRPATH_ROOT, PREFIXES, curie, structure_name
from ..walker import ModelWalker, PropertyMapping

logger = logging.getLogger(__name__)

HEADER = {
    "@version": 1.1,
    "@vocab": "http://example.com/UNKNOWN#",
}

NAMESPACES = {
    "fhir": PREFIXES["fhir"],
    "rdf": PREFIXES["rdf"],
    "xsd": PREFIXES["xsd"],
    "owl": PREFIXES["owl"],
}

TYPE_AND_INDEX = {
    "resourceType": {"@id": "rdf:type", "@type": "@id"},
    "index": {"@id": "fhir:index", "@type": PREFIXES["xsd"] + "integer"},
}

ROOT = {
    "@context": {
        "fhir": PREFIXES["fhir"],
        "owl": PREFIXES["owl"],
        "rdf": PREFIXES["rdf"],
        "rdfs": PREFIXES["rdfs"],
        "xsd": PREFIXES["xsd"],
        "dc": "http://purl.org/dc/elements/1.1/",
        "cs": "http://hl7.org/orim/codesystem/",
        "dcterms": "http://purl.org/dc/terms/",
        "dt": "http://hl7.org/orim/datatype/",
        "ex": "http://hl7.org/fhir/StructureDefinition/",
        "fhir-vs": PREFIXES["fhirvs"],
        "loinc": "http://loinc.org/rdf#",
        "os": "http://open-services.net/ns/core#",
        "rim": "http://hl7.org/owl/rim/",
        "sct": "http://snomed.info/id/",
        "vs": "http://hl7.org/orim/valueset/",
        "w5": "http://hl7.org/fhir/w5#",
    }
}

SUFFIX = ".context.jsonld"


def context_file_name(type_name: str) -> str:
    return type_name + SUFFIX


class JsonLdContextGenerator:
    def __init__(self, loader: DefinitionLoader, config: GeneratorConfig | None = None) -> None:
        self.loader = loader
        self.config = config if config is not None else GeneratorConfig()
        self.model_walker = ModelWalker(loader, self.config)
        self.cache: dict[str, dict[str, Any]] = {"root": ROOT}
        # term dictionaries being filled, innermost last
        self.frames: list[dict[str, Any]] = []
        self.in_progress: set[str] = set()

    async def gen_jsonld_context(self, structure: Structure) -> dict[str, Any]:
        """The ``{"@context": ...}`` document for ``structure``, memoized by structure id."""
        if structure.id in self.cache:
            return self.cache[structure.id]

        logger.debug("generating JSON-LD context for %s", structure.id)
        context: dict[str, Any] = {**HEADER, **NAMESPACES, **copy.deepcopy(TYPE_AND_INDEX)}
        self.in_progress.add(structure.id)
        # generating a base context walks another structure; keep our frames out of it
        outer_frames = self.frames
        try:
            if structure.base_definition is not None:
                base_name = structure.base_name
                if base_name is None:
                    raise StructureDefinitionError(
                        f"Don't know where to look for base structure {structure.base_definition}",
                        structure.id,
                    )
                base = await self.base_context(base_name)
                context.update(copy.deepcopy(base["@context"]))

            self.frames = [context]
            await self.model_walker.visit_resource(structure, self)
        finally:
            self.frames = outer_frames
            self.in_progress.discard(structure.id)

        self.cache[structure.id] = {"@context": context}
        return self.cache[structure.id]

    async def base_context(self, name: str) -> dict[str, Any]:
        if name in self.cache:
            return self.cache[name]
        if name in self.in_progress:
            self.config.report(StructureCycleError(sorted(self.in_progress) + [name]))
            return {"@context": {}}

        structure = await self.loader.get_structure_definition_by_name(name)
        if structure is None:
            self.config.report(DefinitionLookupError(f"Key {name} not found"))
            return {"@context": {}}
        return await self.gen_jsonld_context(structure)

    async def enter(self, mapping: PropertyMapping) -> None:
        type_name = structure_name(mapping.type)
        if type_name is None:
            raise StructureDefinitionError(
                f"Don't know where to look for base structure {mapping.type}",
                mapping.field.id,
            )
        base = await self.base_context(type_name)
        nested = {
            "@id": curie(mapping.predicate),
            "@context": copy.deepcopy(base["@context"]),
        }
        self._set_list_container(nested, mapping)
        self.frames[-1][mapping.property] = nested
        self.frames.append(nested["@context"])

    async def element(self, mappings: list[PropertyMapping]) -> None:
        frame = self.frames[-1]
        for mapping in mappings:
            predicate = curie(mapping.predicate)
            if mapping.is_scalar:
                term: dict[str, Any] = {"@id": predicate}
                value_expr = mapping.type.value_expr
                # disjunctions and placeholders have no single datatype
                if isinstance(value_expr, NodeConstraint) and value_expr.datatype:
                    term["@type"] = value_expr.datatype
                # fhir:v in core; Narrative.div keeps its property name
                frame["v" if predicate == "fhir:v" else mapping.property] = term
            else:
                type_name = mapping.type
                if type_name.startswith(FHIRPATH_ROOT):
                    type_name = type_name[len(FHIRPATH_ROOT):]
                term = {"@id": predicate, "@context": context_file_name(type_name)}
                self._set_list_container(term, mapping)
                frame[mapping.property] = term

    async def exit(self, mapping: PropertyMapping) -> None:
        self.frames.pop()

    def _set_list_container(self, term: dict[str, Any], mapping: PropertyMapping) -> None:
        if self.config.axes.c and mapping.field.is_multiple:
            term["@container"] = "@list"
