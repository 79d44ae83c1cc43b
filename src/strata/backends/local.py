"""Host execution of compilers, archivers and generators via subprocess."""

from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from strata.backends.base import ToolResult

# Exit status reported when the tool binary cannot be started at all.
TOOL_NOT_FOUND_STATUS = 127


@dataclass(slots=True)
class LocalToolRunner:
    name: str = "local"

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
    ) -> ToolResult:
        command = tuple(argv)
        try:
            result = subprocess.run(
                command,
                cwd=str(cwd),
                env=dict(env),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            return ToolResult(
                argv=command,
                returncode=TOOL_NOT_FOUND_STATUS,
                stderr=f"{command[0]}: {exc.strerror or exc}",
            )
        return ToolResult(
            argv=command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
