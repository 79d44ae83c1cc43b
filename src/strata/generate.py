"""Schema-to-source generation for ``.proto`` files.

Generated files are annotated so that ``-Wshadow`` warnings are silenced only
between the first and last line of each generated file, leaving hand-written
code diagnosed as usual.
"""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from pathlib import Path

from strata.backends.base import ToolRunner
from strata.errors import ToolExecutionError
from strata.models import Toolchain

SCHEMA_SUFFIX = ".proto"
GENERATED_SOURCE_SUFFIX = ".pb.cc"
GENERATED_HEADER_SUFFIX = ".pb.h"

ANNOTATION_HEADER = '#pragma GCC diagnostic ignored "-Wshadow"\n'
ANNOTATION_FOOTER = '#pragma GCC diagnostic warning "-Wshadow"\n'


def generated_outputs(schema: str) -> tuple[str, str]:
    """Return the (source, header) paths generated from *schema*."""
    stem = schema.removesuffix(SCHEMA_SUFFIX)
    return f"{stem}{GENERATED_SOURCE_SUFFIX}", f"{stem}{GENERATED_HEADER_SUFFIX}"


def protoc_command(toolchain: Toolchain, schema: Path, out_dir: Path) -> tuple[str, ...]:
    return (toolchain.protoc, f"-I{schema.parent}", f"--cpp_out={out_dir}", str(schema))


def annotate_generated(path: Path) -> None:
    text = path.read_text(encoding="utf-8")
    if text and not text.endswith("\n"):
        text += "\n"
    path.write_text(ANNOTATION_HEADER + text + ANNOTATION_FOOTER, encoding="utf-8")


def generate_sources(
    *,
    runner: ToolRunner,
    toolchain: Toolchain,
    schema: Path,
    output_dir: Path,
    cwd: Path,
    env: Mapping[str, str],
) -> tuple[tuple[str, ...], tuple[Path, ...]]:
    """Run the generator for *schema* and move annotated outputs into *output_dir*.

    The generator writes into a scratch directory first, so an interrupted
    generation never leaves a complete-looking output behind. Returns the
    command that was run and the final output paths.
    """
    scratch = output_dir / f".{schema.name}.tmp"
    if scratch.exists():
        shutil.rmtree(scratch)
    scratch.mkdir(parents=True)
    command = protoc_command(toolchain, schema, scratch)
    try:
        result = runner.run(command, cwd=cwd, env=env)
        if result.returncode != 0:
            raise ToolExecutionError(
                "Schema generator failed.",
                hint="Check the generator output for details.",
                context={
                    "schema": str(schema),
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[:2000] if result.stderr else "",
                    "command": " ".join(command),
                },
            )
        source_name, header_name = (Path(name).name for name in generated_outputs(schema.name))
        outputs: list[Path] = []
        for name in (source_name, header_name):
            produced = scratch / name
            if not produced.exists():
                raise ToolExecutionError(
                    "Schema generator did not produce an expected file.",
                    context={"schema": str(schema), "missing": name, "command": " ".join(command)},
                )
            annotate_generated(produced)
        for name in (header_name, source_name):
            final = output_dir / name
            produced = scratch / name
            produced.replace(final)
            outputs.append(final)
        return command, tuple(reversed(outputs))
    finally:
        shutil.rmtree(scratch, ignore_errors=True)
