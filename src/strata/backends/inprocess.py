"""In-process tool backend for testing and development.

Simulates the compiler, archiver and schema generator without invoking any
external binaries. Outputs are deterministic functions of their inputs, so
this backend is suitable for:
- Unit tests that verify staleness and invalidation behavior
- Development environments without a C toolchain installed

Compiles scan quoted ``#include`` directives (relative to the including file
and any ``-I`` directories) and emit a make-style depfile, mirroring what a
real compiler produces for ``-MMD -MP``.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from strata.backends.base import ToolResult

_INCLUDE = re.compile(r'^\s*#\s*include\s*"([^"]+)"', re.MULTILINE)
_LINKABLE_SUFFIXES = (".o", ".a", ".so")


@dataclass(slots=True)
class InProcessToolRunner:
    """Backend that produces deterministic placeholder artifacts in-process."""

    name: str = "inprocess"
    compiler_identity: str = "inprocess-cc 1.0 (x86_64-linux-gnu)"
    failing: set[str] = field(default_factory=set)
    calls: list[tuple[str, ...]] = field(default_factory=list)

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
    ) -> ToolResult:
        command = tuple(argv)
        self.calls.append(command)
        for marker in self.failing:
            if any(marker in arg for arg in command):
                return ToolResult(
                    argv=command,
                    returncode=1,
                    stderr=f"{command[0]}: simulated failure ({marker})",
                )

        if "-fverbose-asm" in command:
            return self._fingerprint(command)
        if any(arg.startswith("--cpp_out=") for arg in command):
            return self._generate(command, cwd)
        if len(command) > 2 and command[1] == "rcs":
            return self._archive(command, cwd)
        if "-c" in command:
            return self._compile(command, cwd)
        if "-o" in command:
            return self._link(command, cwd)
        return ToolResult(argv=command, returncode=2, stderr=f"{command[0]}: unsupported invocation")

    def calls_matching(self, fragment: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if any(fragment in arg for arg in call)]

    def _fingerprint(self, command: tuple[str, ...]) -> ToolResult:
        dump = (
            f"\t.file\t\"\"\n"
            f"# {command[0]} ({self.compiler_identity})\n"
            f"# options passed: {' '.join(command[1:])}\n"
            "\t.ident\t\"inprocess\"\n"
        )
        return ToolResult(argv=command, returncode=0, stdout=dump)

    def _compile(self, command: tuple[str, ...], cwd: Path) -> ToolResult:
        source = _resolve(cwd, _option_value(command, "-c"))
        output = _resolve(cwd, _option_value(command, "-o"))
        include_dirs = [_resolve(cwd, arg[2:]) for arg in command if arg.startswith("-I")]

        headers, missing = _scan_includes(source, include_dirs)
        if missing is not None:
            return ToolResult(
                argv=command,
                returncode=1,
                stderr=f"{source}: fatal error: {missing}: No such file or directory",
            )

        digest = hashlib.sha256(source.read_bytes())
        for header in headers:
            digest.update(header.read_bytes())
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(
            f"object {source}\nflags {' '.join(command[1:])}\ndigest {digest.hexdigest()}\n",
            encoding="utf-8",
        )

        if "-MF" in command:
            depfile = _resolve(cwd, _option_value(command, "-MF"))
            rule_target = _option_value(command, "-MT") if "-MT" in command else str(output)
            prerequisites = " ".join(_escape(str(path)) for path in (source, *headers))
            lines = [f"{_escape(rule_target)}: {prerequisites}"]
            if "-MP" in command:
                lines.extend(f"{_escape(str(header))}:" for header in headers)
            depfile.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return ToolResult(argv=command, returncode=0)

    def _link(self, command: tuple[str, ...], cwd: Path) -> ToolResult:
        output = _resolve(cwd, _option_value(command, "-o"))
        inputs = [
            _resolve(cwd, arg)
            for arg in command[1:]
            if arg.endswith(_LINKABLE_SUFFIXES) and arg != _option_value(command, "-o")
        ]
        return self._write_bundle(command, output, inputs, kind="linked")

    def _archive(self, command: tuple[str, ...], cwd: Path) -> ToolResult:
        output = _resolve(cwd, command[2])
        members = [_resolve(cwd, arg) for arg in command[3:]]
        return self._write_bundle(command, output, members, kind="archive")

    def _write_bundle(
        self,
        command: tuple[str, ...],
        output: Path,
        inputs: list[Path],
        *,
        kind: str,
    ) -> ToolResult:
        for path in inputs:
            if not path.exists():
                return ToolResult(
                    argv=command,
                    returncode=1,
                    stderr=f"{command[0]}: cannot find {path}",
                )
        digest = hashlib.sha256()
        for path in inputs:
            digest.update(path.read_bytes())
        output.parent.mkdir(parents=True, exist_ok=True)
        members = "\n".join(f"member {path.name}" for path in inputs)
        output.write_text(
            f"{kind} {output.name}\n{members}\ndigest {digest.hexdigest()}\n",
            encoding="utf-8",
        )
        return ToolResult(argv=command, returncode=0)

    def _generate(self, command: tuple[str, ...], cwd: Path) -> ToolResult:
        out_dir = _resolve(cwd, next(arg for arg in command if arg.startswith("--cpp_out="))[10:])
        schema = _resolve(cwd, command[-1])
        if not schema.exists():
            return ToolResult(argv=command, returncode=1, stderr=f"{schema}: File not found.")
        stem = schema.name.removesuffix(".proto")
        digest = hashlib.sha256(schema.read_bytes()).hexdigest()
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / f"{stem}.pb.h").write_text(
            f"// Generated from {schema.name} ({digest})\n#pragma once\n",
            encoding="utf-8",
        )
        (out_dir / f"{stem}.pb.cc").write_text(
            f"// Generated from {schema.name} ({digest})\n#include \"{stem}.pb.h\"\n",
            encoding="utf-8",
        )
        return ToolResult(argv=command, returncode=0)


def _option_value(command: tuple[str, ...], option: str) -> str:
    return command[command.index(option) + 1]


def _resolve(cwd: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else cwd / path


def _escape(path: str) -> str:
    return path.replace(" ", "\\ ")


def _scan_includes(source: Path, include_dirs: list[Path]) -> tuple[list[Path], str | None]:
    found: list[Path] = []
    pending = [source]
    seen: set[Path] = {source}
    while pending:
        current = pending.pop(0)
        for name in _INCLUDE.findall(current.read_text(encoding="utf-8")):
            candidates = [current.parent / name, *(directory / name for directory in include_dirs)]
            header = next((candidate for candidate in candidates if candidate.exists()), None)
            if header is None:
                return found, name
            if header not in seen:
                seen.add(header)
                found.append(header)
                pending.append(header)
    return found, None
