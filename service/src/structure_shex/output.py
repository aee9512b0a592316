import asyncio
import json
import logging
from pathlib import Path

from .data.config import Axes, GeneratorConfig
from .data.loader import BundleDefinitionLoader
from .errors import DefinitionNotFound
from .jsonldContextGenerator.context_generator import JsonLdContextGenerator, context_file_name
from .shexGenerator.nesting import nest_shapes
from .shexGenerator.shexj_generator import ShExJGenerator

logger = logging.getLogger(__name__)


def load_config(config_file: Path | None, axes: str | None) -> GeneratorConfig:
    config = GeneratorConfig.from_file(config_file) if config_file else GeneratorConfig()
    if axes is not None:
        config = config.model_copy(update={"axes": Axes.parse(axes)})
    return config


def write_json(path: Path, content: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(content, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def output_shexj(
    sources: list[Path],
    output: Path,
    config: GeneratorConfig,
    skip: list[str] | None = None,
    nest: bool = False,
) -> None:
    print("Generating ShExJ...")

    loader = BundleDefinitionLoader.from_paths(sources, config.fhir_release)
    logger.info("loaded %s", str(loader))
    generator = ShExJGenerator(loader, config)
    schema = asyncio.run(generator.gen_shexj(loader.sources, skip or []))
    if nest:
        schema = nest_shapes(schema)

    write_json(output, schema.to_json())
    print(f"Wrote {len(schema.shapes)} shapes to {output}")

    for kind, keys in (config.missing or {}).items():
        print(f"Missing {kind}: {', '.join(sorted(keys))}")


def output_contexts(
    sources: list[Path],
    names: list[str],
    output_dir: Path,
    config: GeneratorConfig,
) -> None:
    print("Generating JSON-LD contexts...")

    loader = BundleDefinitionLoader.from_paths(sources, config.fhir_release)
    generator = JsonLdContextGenerator(loader, config)

    async def generate():
        for name in names:
            structure = await loader.get_structure_definition_by_name(name)
            if structure is None:
                raise DefinitionNotFound(f"StructureDefinition '{name}' not found")
            context = await generator.gen_jsonld_context(structure)
            write_json(output_dir / context_file_name(name), context)
            print(f"Wrote {context_file_name(name)}")

    asyncio.run(generate())
