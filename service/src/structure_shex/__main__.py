import argparse
import logging
from pathlib import Path

from .output import load_config, output_contexts, output_shexj
from .serve import serve

parser = argparse.ArgumentParser(
    description="Generate ShEx schemas and JSON-LD contexts from FHIR definitions"
)
parser.add_argument(
    "--log-level",
    default="WARNING",
    choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    help="Logging level (default: WARNING)",
)

subparsers = parser.add_subparsers(dest="cmd", required=True)

parser_serve = subparsers.add_parser("serve", help="start the server")
parser_serve.add_argument("--host", default="0.0.0.0")
parser_serve.add_argument("--port", type=int, default=8000)

parser_shexj = subparsers.add_parser("shexj", help="generate a ShExJ schema")
parser_shexj.add_argument(
    "sources",
    type=Path,
    nargs="+",
    help="FHIR Bundle files, single definition files or directories of them",
)
parser_shexj.add_argument(
    "--output", type=Path, required=True, help="The ShExJ file to write"
)
parser_shexj.add_argument(
    "--axes",
    type=str,
    default=None,
    help="Naming and encoding axes, e.g. RDVch (default: from config or RDVch)",
)
parser_shexj.add_argument(
    "--skip",
    type=str,
    action="append",
    default=[],
    help="Id of a definition to leave out (may be repeated)",
)
parser_shexj.add_argument(
    "--nest",
    action="store_true",
    help="Inline nested-element shapes that are referenced only once",
)
parser_shexj.add_argument(
    "--config", type=Path, default=None, help="Generator config file (JSON or YAML)"
)

parser_context = subparsers.add_parser("context", help="generate JSON-LD contexts")
parser_context.add_argument(
    "sources",
    type=Path,
    nargs="+",
    help="FHIR Bundle files, single definition files or directories of them",
)
parser_context.add_argument(
    "--name",
    type=str,
    action="append",
    required=True,
    help="The StructureDefinition to generate a context for (may be repeated)",
)
parser_context.add_argument(
    "--output-dir", type=Path, required=True, help="Directory for the context files"
)
parser_context.add_argument("--axes", type=str, default=None)
parser_context.add_argument("--config", type=Path, default=None)


def main(argv: list[str] | None = None) -> None:
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s:%(name)s: %(message)s",
    )

    if args.cmd == "serve":
        serve(args.host, args.port)
    elif args.cmd == "shexj":
        config = load_config(args.config, args.axes)
        if config.missing is None and not config.log_missing:
            # report missing definitions at the end instead of aborting
            config = config.model_copy(update={"missing": {}})
        output_shexj(args.sources, args.output, config, args.skip, args.nest)
    elif args.cmd == "context":
        config = load_config(args.config, args.axes)
        output_contexts(args.sources, args.name, args.output_dir, config)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
