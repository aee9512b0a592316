import json
import logging
import re
from pathlib import Path
from typing import Callable, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..errors import DefinitionLookupError, InvalidAxes, InvalidFileFormat

logger = logging.getLogger(__name__)

AXES_PATTERN = re.compile(r"^rdvch$", re.IGNORECASE)


class Axes(BaseModel):
    """Naming and encoding toggles. None of them changes which instances validate.

    r: qualify predicates of resources with the resource name and path
    d: qualify predicates of datatypes with the datatype name and path
    v: expand choice fields into one curried property per type
    c: encode multi-valued fields as rdf:List shapes instead of fhir:index
    h: bare ("humane") literal values instead of typed literal wrappers
    """

    model_config = ConfigDict(frozen=True)

    r: bool = True
    d: bool = True
    v: bool = True
    c: bool = False
    h: bool = False

    @staticmethod
    def parse(axes: str) -> "Axes":
        if not AXES_PATTERN.match(axes):
            raise InvalidAxes(f'expected axes string "{axes}" to match /rdvch/i')
        return Axes(**{letter.lower(): letter.isupper() for letter in axes})

    def __str__(self) -> str:
        return "".join(
            letter.upper() if getattr(self, letter) else letter for letter in "rdvch"
        )


class GeneratorConfig(BaseModel):
    axes: Axes = Axes()
    fhir_release: Literal["R4B", "R5"] = "R4B"
    add_types_to: list[str] = []
    add_value_set_version_annotation: bool = False
    missing: dict[str, set[str]] | None = None
    log_missing: bool = False
    error: Callable[[Exception], None] | None = Field(default=None, exclude=True)

    @field_validator("axes", mode="before")
    @classmethod
    def _parse_axes(cls, value):
        if isinstance(value, str):
            return Axes.parse(value)
        return value

    @model_validator(mode="wrap")
    @classmethod
    def _keep_missing(cls, data, handler):
        config = handler(data)
        # record into the caller's own collection, validation copies it
        missing = data.get("missing") if isinstance(data, dict) else None
        if isinstance(missing, dict) and all(isinstance(keys, set) for keys in missing.values()):
            config.missing = missing
        return config

    def report(self, error: Exception) -> None:
        """Hand an error to the configured sink, or raise it when there is none."""
        if self.error is None:
            raise error
        logger.debug("collected error: %s", error)
        self.error(error)

    def record_missing(self, kind: str, key: str) -> None:
        if self.missing is not None:
            self.missing.setdefault(kind, set()).add(key)
            return

        msg = f"can't find definition for {kind} {key}"
        if self.log_missing:
            logger.warning(msg)
        else:
            self.report(DefinitionLookupError(msg))

    @staticmethod
    def from_file(file: str | Path) -> "GeneratorConfig":
        file = Path(file)
        content = file.read_text(encoding="utf-8")

        try:
            if file.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            else:
                data = json.loads(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise InvalidFileFormat(f"failed to parse config file {file}: {e}") from e

        try:
            return GeneratorConfig.model_validate(data)
        except ValidationError as e:
            msg = f"failed to load config from {str(file)}"
            logger.error(msg)
            logger.error(e.errors())
            raise
