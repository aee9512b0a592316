from typing import Any, Literal

from pydantic import BaseModel

from .error import Error


class GenerationOptions(BaseModel):
    axes: str = "RDVch"
    add_types_to: list[str] = []
    add_value_set_version_annotation: bool = False
    fhir_release: Literal["R4B", "R5"] = "R4B"


class ShExJRequest(GenerationOptions):
    """
    FHIR Bundles (or single definitions) to generate shapes for
    """

    sources: list[dict[str, Any]]
    skip: list[str] = []
    nest: bool = False


class ShExJResult(BaseModel):
    shexj: dict[str, Any]
    missing: dict[str, list[str]] = {}
    errors: list[Error] = []


class ContextRequest(GenerationOptions):
    sources: list[dict[str, Any]]


class NestRequest(BaseModel):
    shexj: dict[str, Any]
