import logging

from ..data.config import Axes, GeneratorConfig
from ..data.loader import BundleDefinitionLoader
from ..errors import DefinitionNotFound
from ..jsonldContextGenerator.context_generator import JsonLdContextGenerator
from ..model.error import Error as ErrorModel
from ..model.generation import ContextRequest, GenerationOptions, NestRequest, ShExJRequest, ShExJResult
from ..model.shex import Schema
from ..shexGenerator.nesting import nest_shapes
from ..shexGenerator.shexj_generator import ShExJGenerator

logger = logging.getLogger(__name__)


class GenerationHandler:
    """Runs one generation session per request; nothing is shared between requests."""

    async def generate_shexj(self, request: ShExJRequest) -> ShExJResult:
        errors: list[Exception] = []
        config = self.__config(request, missing={}, error=errors.append)

        loader = BundleDefinitionLoader(request.sources, request.fhir_release)
        logger.info("generating ShExJ from %s", str(loader))
        schema = await ShExJGenerator(loader, config).gen_shexj(loader.sources, request.skip)
        if request.nest:
            schema = nest_shapes(schema)

        if errors:
            logger.warning("generation finished with %d errors", len(errors))
        return ShExJResult(
            shexj=schema.to_json(),
            missing={kind: sorted(keys) for kind, keys in config.missing.items()},
            errors=[ErrorModel.from_except(e) for e in errors],
        )

    async def generate_context(self, name: str, request: ContextRequest) -> dict:
        loader = BundleDefinitionLoader(request.sources, request.fhir_release)
        structure = await loader.get_structure_definition_by_name(name)
        if structure is None:
            raise DefinitionNotFound(f"StructureDefinition '{name}' not found")

        config = self.__config(request, log_missing=True)
        return await JsonLdContextGenerator(loader, config).gen_jsonld_context(structure)

    def nest(self, request: NestRequest) -> dict:
        schema = Schema.model_validate(request.shexj)
        return nest_shapes(schema).to_json()

    @staticmethod
    def __config(options: GenerationOptions, **kwargs) -> GeneratorConfig:
        # parsed here so that bad axes surface as InvalidAxes, not a ValidationError
        axes = Axes.parse(options.axes)
        return GeneratorConfig(
            axes=axes,
            fhir_release=options.fhir_release,
            add_types_to=options.add_types_to,
            add_value_set_version_annotation=options.add_value_set_version_annotation,
            **kwargs,
        )
