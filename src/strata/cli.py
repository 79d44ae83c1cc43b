"""Command-line entry point.

Usage::

    strata                 # build everything in the default variant
    strata debug           # select a variant and build everything
    strata clean           # remove every variant output tree
    strata sub/app         # build one target in the default variant
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from strata.config import TOOLS_ENV
from strata.engine import dispatch
from strata.errors import StrataError

VERBOSE_ENV = "V"
ERROR_EXIT_STATUS = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="strata",
        description="Incremental, flag- and header-aware build engine for C/C++ trees.",
    )
    parser.add_argument(
        "goals",
        nargs="*",
        help="Variant names (release, debug, coverage, ...), `clean`, or target paths.",
    )
    parser.add_argument(
        "-C",
        "--directory",
        type=Path,
        default=Path.cwd(),
        help="Source root to build (default: current directory).",
    )
    parser.add_argument("--config", type=Path, default=None, help="Project config file (YAML).")
    parser.add_argument("--tools", type=Path, default=None, help="Directory holding the external tools.")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every tool command line.",
    )
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stdout,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    env = dict(os.environ)
    if args.tools is not None:
        env[TOOLS_ENV] = str(args.tools)
    configure_logging(args.verbose or bool(env.get(VERBOSE_ENV)))

    source_root = args.directory.resolve()
    goals: list[str | None] = list(args.goals) or [None]
    try:
        for goal in goals:
            dispatch(goal, source_root=source_root, env=env, config_path=args.config)
    except StrataError as exc:
        print(f"strata: {exc}", file=sys.stderr)
        return ERROR_EXIT_STATUS
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
