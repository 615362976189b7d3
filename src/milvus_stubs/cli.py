import argparse
import logging
import sys
from pathlib import Path

from milvus_stubs.config import GeneratorConfig
from milvus_stubs.errors import StubsError
from milvus_stubs.generator import StubGenerator
from milvus_stubs.protoc import locate_protoc

logger = logging.getLogger(__name__)

_OPTION_DEFAULTS = {
    "root": None,
    "config": None,
    "out_dir": None,
    "build_server": False,
    "no_pyi": False,
    "no_relative_imports": False,
    "verbose": False,
}


def _common_options() -> argparse.ArgumentParser:
    # SUPPRESS keeps a subcommand from resetting options given before it
    options = argparse.ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)
    options.add_argument("--root", type=Path,
                         help="Project root that relative paths are resolved against (default: cwd)")
    options.add_argument("--config",
                         help="JSON file overriding the default schema and output paths")
    options.add_argument("--out-dir",
                         help="Directory receiving the generated modules")
    options.add_argument("--build-server", action="store_true",
                         help="Also generate server-side servicers")
    options.add_argument("--no-pyi", action="store_true",
                         help="Do not generate .pyi type stubs")
    options.add_argument("--no-relative-imports", action="store_true",
                         help="Keep protoc's absolute imports between generated modules")
    options.add_argument("-v", "--verbose", action="store_true",
                         help="Log what is being run")
    return options


def build_parser() -> argparse.ArgumentParser:
    options = _common_options()
    parser = argparse.ArgumentParser(
        prog="milvus-stubs", description="Generate Milvus gRPC client bindings",
        parents=[options],
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("generate", parents=[options],
                          help="Locate protoc and generate the stubs (default)")
    subparsers.add_parser("check", parents=[options],
                          help="Exit with status 1 if the stubs are out of date")
    subparsers.add_parser("locate", parents=[options],
                          help="Print the protoc that would be used")
    return parser


def parse_args(argv=None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    for name, default in _OPTION_DEFAULTS.items():
        if not hasattr(args, name):
            setattr(args, name, default)
    return args


def load_config(args) -> GeneratorConfig:
    if args.config:
        config = GeneratorConfig.for_file_path(args.config, root=args.root)
    else:
        config = GeneratorConfig.from_defaults(args.root)

    if args.out_dir:
        config.out_dir = config.resolve(args.out_dir)
    if args.build_server:
        config.build_server = True
    if args.no_pyi:
        config.pyi = False
    if args.no_relative_imports:
        config.relative_imports = False
    return config


def run(argv=None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(args)
        if args.command == "check":
            if StubGenerator(config).needs_regeneration():
                print("Regeneration needed")
                return 1
            print("Generated files are up to date")
            return 0

        protoc = locate_protoc()
        if args.command == "locate":
            print(protoc)
            return 0

        StubGenerator(config, protoc).generate()
        return 0
    except StubsError as e:
        logger.error(str(e))
        return 1


def main():
    sys.exit(run())
