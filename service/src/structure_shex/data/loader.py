import json
import logging
from pathlib import Path
from typing import Any, Iterable

from ..errors import InvalidFileFormat
from .structure import Structure, parse_resource

logger = logging.getLogger(__name__)

INDEXED_TYPES = ("StructureDefinition", "ValueSet", "CodeSystem")


class DefinitionLoader:
    """Supplies FHIR definitions to the generators.

    Lookups are coroutines so that implementations may fetch lazily; both
    return ``None`` when nothing matches.
    """

    async def get_structure_definition_by_name(self, name: str) -> Structure | None:
        raise NotImplementedError

    async def get_codesystem_by_url(self, url: str) -> Any | None:
        raise NotImplementedError


class BundleDefinitionLoader(DefinitionLoader):
    """Serves definitions out of FHIR Bundles and loose resource JSON.

    Raw resources are indexed up front; StructureDefinitions and CodeSystems
    are validated with ``fhir.resources`` on first access and cached.
    """

    def __init__(self, sources: Iterable[dict], release: str = "R4B") -> None:
        self.release = release
        self.__sources: list[dict] = []
        self.__structures: dict[str, dict] = {}
        self.__code_systems: dict[str, dict] = {}
        self.__value_sets: dict[str, dict] = {}
        self.__parsed_structures: dict[str, Structure] = {}
        self.__parsed_code_systems: dict[str, Any] = {}

        for source in sources:
            self.add(source)

    def __str__(self) -> str:
        return (
            f"(structures={len(self.__structures)}, "
            f"codesystems={len(self.__code_systems)}, valuesets={len(self.__value_sets)})"
        )

    @property
    def sources(self) -> list[dict]:
        """The indexed content as Bundles, in the order it was added."""
        return self.__sources

    def add(self, source: dict) -> None:
        if source.get("resourceType") == "Bundle":
            bundle = source
        else:
            bundle = {
                "resourceType": "Bundle",
                "type": "collection",
                "entry": [{"resource": source}],
            }
        self.__sources.append(bundle)

        for entry in bundle.get("entry", []):
            resource = entry.get("resource")
            if resource is not None:
                self.__index(resource)

    def __index(self, resource: dict) -> None:
        resource_type = resource.get("resourceType")
        if resource_type == "StructureDefinition":
            for key in (resource.get("id"), resource.get("name"), resource.get("url")):
                if key and key not in self.__structures:
                    self.__structures[key] = resource
        elif resource_type == "CodeSystem":
            url = resource.get("url")
            if url:
                self.__code_systems[_strip_version(url)] = resource
        elif resource_type == "ValueSet":
            for key in (resource.get("id"), resource.get("url")):
                if key:
                    self.__value_sets[_strip_version(key)] = resource

    async def get_structure_definition_by_name(self, name: str) -> Structure | None:
        raw = self.__structures.get(name)
        if raw is None:
            logger.debug("no StructureDefinition named '%s'", name)
            return None

        key = raw.get("id")
        if key not in self.__parsed_structures:
            self.__parsed_structures[key] = Structure(raw, self.release)
        return self.__parsed_structures[key]

    async def get_codesystem_by_url(self, url: str) -> Any | None:
        url = _strip_version(url)
        raw = self.__code_systems.get(url)
        if raw is None:
            logger.debug("no CodeSystem with url '%s'", url)
            return None

        if url not in self.__parsed_code_systems:
            self.__parsed_code_systems[url] = parse_resource(raw, self.release)
        return self.__parsed_code_systems[url]

    def get_value_set(self, key: str) -> dict | None:
        return self.__value_sets.get(_strip_version(key))

    @staticmethod
    def from_paths(paths: Iterable[Path], release: str = "R4B") -> "BundleDefinitionLoader":
        """Load Bundles or single resources from files; directories are searched for ``*.json``."""
        loader = BundleDefinitionLoader([], release)
        for path in paths:
            path = Path(path)
            if not path.exists():
                raise FileNotFoundError(
                    f"The file {path} does not exist. Please check the file path and try again."
                )
            files = sorted(path.glob("**/*.json")) if path.is_dir() else [path]
            for file in files:
                content = _read_json(file, strict=not path.is_dir())
                if content is None:
                    continue
                if content.get("resourceType") == "Bundle" or content.get(
                    "resourceType"
                ) in INDEXED_TYPES:
                    loader.add(content)
        return loader


def _strip_version(url: str) -> str:
    return url.split("|", 1)[0]


def _read_json(file: Path, strict: bool) -> dict | None:
    try:
        content = json.loads(file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        if strict:
            raise InvalidFileFormat(f"{file} is not valid JSON: {e}") from e
        logger.warning("skipping '%s': not valid JSON", str(file))
        return None

    if not isinstance(content, dict):
        if strict:
            raise InvalidFileFormat(f"{file} does not contain a FHIR resource")
        return None
    return content
