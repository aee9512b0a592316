"""Expansion of ValueSet compose rules into enumerated literal values."""

from __future__ import annotations

import logging
from typing import Any

from ..data.config import GeneratorConfig
from ..data.loader import DefinitionLoader
from ..model.shex import ObjectLiteral

logger = logging.getLogger(__name__)


class TerminologyCompiler:
    def __init__(self, loader: DefinitionLoader, config: GeneratorConfig) -> None:
        self.loader = loader
        self.config = config

    async def parse_compose(self, compose: Any | None) -> list[ObjectLiteral]:
        """Codes permitted by ``compose.include``, de-duplicated in first-seen order.

        An include that lists concepts contributes exactly those codes. One that
        only names a system contributes every code of that CodeSystem,
        including nested concepts. Unknown systems are recorded as missing.
        """
        includes = (compose.include or []) if compose is not None else []
        codes: list[str] = []
        for include in includes:
            if include.concept:
                codes.extend(c.code for c in include.concept)
            elif include.system:
                code_system = await self.loader.get_codesystem_by_url(include.system)
                if code_system is None:
                    self.config.record_missing("codesystems", include.system)
                    continue
                codes.extend(self.parse_concept(code_system.concept or []))
            else:
                logger.debug("include without system or concepts ignored")

        return [ObjectLiteral(value=code) for code in dict.fromkeys(codes)]

    def parse_concept(self, concepts: list[Any]) -> list[str]:
        codes: list[str] = []
        for concept in concepts:
            if concept.code:
                codes.append(concept.code)
            if concept.concept:
                codes.extend(self.parse_concept(concept.concept))
        return codes
