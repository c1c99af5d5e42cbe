"""Command-line interface for nb2tex."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from . import core
from .version import __version__


def _get_usage() -> str:
    return (
        f"nb2tex {__version__}\n"
        "Usage:\n"
        "  nb2tex [--help] [--version|--ver]\n"
        "  nb2tex PATH [-o OUTPUT] [--root-dir DIR] [options]\n\n"
        "PATH is a .ipynb notebook or a directory converted recursively.\n\n"
        "Options:\n"
        "  -o, --output OUTPUT   Output .tex path (single notebook only)\n"
        "  --root-dir DIR        Directory used to resolve directive sources and .bib files\n"
        "  --verbose             Verbose progress logs\n"
        "  --debug               Debug logs\n\n"
        "Environment:\n"
        f"  {core.PYTHON_ENV}         Python interpreter tried first for nbconvert"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("path", nargs="?", help="Notebook file or directory of notebooks")
    parser.add_argument("-o", "--output", help="Output .tex path for a single notebook")
    parser.add_argument("--root-dir", help="Directory used to resolve directive sources and bibliography")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def _convert_single(nb_path: Path, output: str | None, root_dir: Path | None, tool: core.ToolCandidate) -> int:
    out_path = Path(output).expanduser().resolve() if output else None
    try:
        result = core.convert_notebook_to_latex(nb_path, out_path, root_dir, tool)
    except core.ConversionError as exc:
        print(f"Conversion failed: {exc}", file=sys.stderr)
        return core.EXIT_CONVERSION_FAILED
    print(f"Created: {result.output_path}")
    if result.metadata.title:
        print(f"  Title: {result.metadata.title}")
    return 0


def _convert_directory(dir_path: Path, root_dir: Path | None, tool: core.ToolCandidate) -> int:
    notebooks = core.find_notebooks(dir_path)
    if not notebooks:
        print(f"No notebooks found in {dir_path}")
        return 0
    results = core.convert_notebooks(dir_path, root_dir, tool)
    for result in results:
        print(f"Created: {result.output_path}")
    if len(results) < len(notebooks):
        print(f"Converted {len(results)} of {len(notebooks)} notebook(s)", file=sys.stderr)
        return core.EXIT_CONVERSION_FAILED
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        print(f"Unrecognized arguments: {' '.join(unknown)}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    if not args.path:
        print(_get_usage())
        print("A notebook file or directory is required", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    target = Path(args.path).expanduser().resolve()
    if not target.exists():
        print(f"Path not found: {target}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS
    if target.is_file() and target.suffix != core.NOTEBOOK_SUFFIX:
        print(f"File must be a {core.NOTEBOOK_SUFFIX} notebook: {target}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS
    if target.is_dir() and args.output:
        print("Option --output applies to a single notebook only", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    root_dir = None
    if args.root_dir:
        root_dir = Path(args.root_dir).expanduser().resolve()
        if not root_dir.is_dir():
            print(f"Root directory not found: {root_dir}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    core.setup_logging(args.verbose, args.debug)

    try:
        tool = core.resolve_nbconvert()
    except core.ExternalToolUnavailable:
        print("Error: nbconvert not found", file=sys.stderr)
        print("Install it with: pip install nbconvert", file=sys.stderr)
        return core.EXIT_NBCONVERT_MISSING

    if target.is_dir():
        return _convert_directory(target, root_dir, tool)
    return _convert_single(target, args.output, root_dir, tool)


if __name__ == "__main__":
    raise SystemExit(main())
