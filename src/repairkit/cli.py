"""CLI entry point: ``repairkit diff`` and ``repairkit compile``."""

from __future__ import annotations

from repairkit.logging_config import setup_logging

setup_logging("WARNING")

import argparse  # noqa: E402
import json  # noqa: E402
import sys  # noqa: E402
from pathlib import Path  # noqa: E402

from repairkit import __version__  # noqa: E402
from repairkit.compiler import compile_units  # noqa: E402
from repairkit.config import Settings  # noqa: E402
from repairkit.constants import DEFAULT_SOURCE_EXTENSION  # noqa: E402
from repairkit.diff import diff  # noqa: E402
from repairkit.errors import GeneratorNotFound, ParseError  # noqa: E402
from repairkit.sources import VirtualSourceUnit  # noqa: E402
from repairkit.trees import default_registry  # noqa: E402


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"repairkit {__version__}")
        return

    if args.command == "diff":
        _run_diff(args)
    elif args.command == "compile":
        _run_compile(args)
    else:
        parser.print_help()


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="repairkit",
        description=(
            "Compile-and-compare core for program repair: "
            "structural diffs and in-memory compilation."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )

    sub = parser.add_subparsers(dest="command")

    diff_parser = sub.add_parser(
        "diff",
        help="Print the edit script between two source files",
    )
    diff_parser.add_argument("old", type=str, help="Original source file")
    diff_parser.add_argument("new", type=str, help="Modified source file")
    diff_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the edit script as JSON",
    )

    compile_parser = sub.add_parser(
        "compile",
        help="Compile source files in memory and print diagnostics",
    )
    compile_parser.add_argument(
        "files",
        nargs="+",
        help="Source files compiled together as one program",
    )
    compile_parser.add_argument(
        "--root",
        "-r",
        default=None,
        help=(
            "Directory qualified names are computed from "
            "(default: each file's stem)"
        ),
    )

    return parser


def _read_unit(path: Path, root: Path | None = None) -> VirtualSourceUnit:
    """Read a file into a unit; the file is never referenced again."""
    if not path.is_file():
        print(f"Error: {path} does not exist", file=sys.stderr)
        sys.exit(1)
    if root is not None:
        parts = list(path.resolve().relative_to(root.resolve()).with_suffix("").parts)
        if len(parts) > 1 and parts[-1] == "__init__":
            parts.pop()
        name = ".".join(parts)
    else:
        name = path.stem
    return VirtualSourceUnit(
        name,
        path.read_bytes(),
        extension=path.suffix or DEFAULT_SOURCE_EXTENSION,
    )


def _run_diff(args: argparse.Namespace) -> None:
    """Execute the diff command."""
    registry = default_registry()
    try:
        source = registry.parse(_read_unit(Path(args.old)))
        target = registry.parse(_read_unit(Path(args.new)))
    except (ParseError, GeneratorNotFound) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    script = diff(source, target, Settings().diff_config)

    if args.json:
        print(
            json.dumps(
                {
                    "summary": script.summary(),
                    "script": script.model_dump(mode="json"),
                },
                indent=2,
            )
        )
        return

    if script.is_empty:
        print("No structural changes.")
        return
    print(script.describe())
    counts = ", ".join(f"{n} {k}" for k, n in script.summary().items() if n)
    print(f"\n{len(script)} actions ({counts})")


def _run_compile(args: argparse.Namespace) -> None:
    """Execute the compile command."""
    root = Path(args.root) if args.root else None
    units = [_read_unit(Path(f), root) for f in args.files]

    settings = Settings()
    result = compile_units(
        units, settings.dependency_classpath, optimize=settings.optimize
    )

    for diagnostic in result.diagnostics:
        print(diagnostic.format())
    if not result.success:
        print(
            f"\nFailed: {len(result.errors)} error(s), "
            f"{len(result.warnings)} warning(s)",
            file=sys.stderr,
        )
        sys.exit(1)
    print(
        f"OK: {len(result.artifacts)} unit(s) compiled, "
        f"{len(result.warnings)} warning(s)"
    )


if __name__ == "__main__":
    main()
