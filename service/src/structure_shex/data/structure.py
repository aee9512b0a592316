import importlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..errors import StructureDefinitionError
from ..prefixes import structure_name

logger = logging.getLogger(__name__)

FHIR_RELEASES = {
    "R4B": "fhir.resources.R4B",
    "R5": "fhir.resources",
}

FHIR_TYPE_EXTENSION = (
    "http://hl7.org/fhir/StructureDefinition/structuredefinition-fhir-type"
)


def fhir_model(release: str, resource_type: str):
    """Return the ``fhir.resources`` model class for a resource type in the given release."""
    if release not in FHIR_RELEASES:
        raise ValueError(f"Unsupported FHIR release '{release}'")
    module = importlib.import_module(f"{FHIR_RELEASES[release]}.{resource_type.lower()}")
    return getattr(module, resource_type)


def parse_resource(data: dict, release: str = "R4B"):
    """Validate a raw ValueSet or CodeSystem with the matching ``fhir.resources`` model."""
    model = fhir_model(release, data.get("resourceType"))
    return model.model_validate(data)


@dataclass(frozen=True, slots=True)
class FieldType:
    code: str
    fhir_type: str | None = None


@dataclass(frozen=True, slots=True)
class FieldBinding:
    strength: str
    value_set: str | None = None


class Structure:
    def __init__(self, data: dict, release: str = "R4B") -> None:
        model = fhir_model(release, "StructureDefinition")
        try:
            self.__data = model.model_validate(data)
        except ValidationError as e:
            logger.error("StructureDefinition '%s' failed validation", data.get("id"))
            raise StructureDefinitionError(str(e), data.get("id")) from e
        self.__release = release
        self.__fields: list[StructureField] = []
        self.__init_fields()

    def __str__(self) -> str:
        return f"(id={self.id}, kind={self.kind}, fields={len(self.fields)})"

    def __repr__(self) -> str:
        return str(self)

    def __init_fields(self) -> None:
        differential = self.__data.differential
        elements = differential.element if differential is not None else []
        self.__fields = [
            StructureField(elem, ordinal) for ordinal, elem in enumerate(elements or [])
        ]

    @staticmethod
    def from_json(path: Path, release: str = "R4B") -> "Structure":
        if not path.exists():
            raise FileNotFoundError(
                f"The file {path} does not exist. Please check the file path and try again."
            )
        return Structure(json.loads(path.read_text(encoding="utf-8")), release)

    @property
    def id(self) -> str:
        return self.__data.id

    @property
    def url(self) -> str:
        return self.__data.url

    @property
    def name(self) -> str:
        return self.__data.name

    @property
    def kind(self) -> str:
        return self.__data.kind

    @property
    def release(self) -> str:
        return self.__release

    @property
    def base_definition(self) -> str | None:
        return self.__data.baseDefinition

    @property
    def base_name(self) -> str | None:
        """Id of the base structure, if the base lives under the core StructureDefinition root."""
        if self.base_definition is None:
            return None
        return structure_name(self.base_definition)

    @property
    def fields(self) -> list["StructureField"]:
        return self.__fields


class StructureField:
    def __init__(self, data: Any, ordinal: int) -> None:
        self.__data = data
        self.__ordinal = ordinal

    def __str__(self) -> str:
        return f"(id={self.id}, min={self.min}, max={self.max}, types={self.type_codes})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def id(self) -> str | None:
        return self.__data.id

    @property
    def path(self) -> str:
        return self.__data.path

    @property
    def ordinal(self) -> int:
        return self.__ordinal

    @property
    def min(self) -> int | None:
        return self.__data.min

    @property
    def max(self) -> str | None:
        return self.__data.max

    @property
    def is_multiple(self) -> bool:
        return self.max not in (None, "0", "1")

    @property
    def has_type(self) -> bool:
        return bool(getattr(self.__data, "type", None))

    @property
    def types(self) -> list[FieldType]:
        """Type entries in declaration order, with the fhir-type extension value resolved."""
        entries: list[FieldType] = []
        for t in getattr(self.__data, "type", None) or []:
            fhir_type = None
            for ext in getattr(t, "extension", None) or []:
                if ext.url == FHIR_TYPE_EXTENSION:
                    fhir_type = ext.valueUrl or ext.valueUri
                    break
            entries.append(FieldType(code=t.code, fhir_type=fhir_type))
        return entries

    @property
    def type_codes(self) -> list[str]:
        return [t.code for t in self.types]

    @property
    def content_reference(self) -> str | None:
        return self.__data.contentReference

    @property
    def representation(self) -> list[str]:
        return list(self.__data.representation or [])

    @property
    def binding(self) -> FieldBinding | None:
        binding = self.__data.binding
        if binding is None:
            return None
        return FieldBinding(strength=binding.strength, value_set=binding.valueSet)
