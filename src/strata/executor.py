"""Topological execution of stale build actions.

A target is rebuilt when any of its outputs is missing, when a prerequisite
is newer than its oldest output or was rebuilt during this run, or, for
objects, when the flag fingerprint recorded at its last compile differs from
the current one. Each action writes to a temporary path that is renamed into
place only on success, so an interrupted or failed action never leaves an
output that a later run would consider complete.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from strata.backends.base import ToolRunner
from strata.depstore import DependencyRecord, DependencyStore
from strata.errors import ToolExecutionError, ValidationError
from strata.fingerprint import Fingerprint
from strata.fsutil import mtime_ns, remove_if_exists, temporary_path
from strata.generate import generate_sources
from strata.graph import ARCHIVE_SUFFIX, OBJECT_SUFFIX, TargetGraph
from strata.models import ActionRecord, BuildReport, FlagKey, FlagProfile, Language, Target, Toolchain
from strata.observability import StructuredLogger


@dataclass(frozen=True, slots=True)
class FlagResolver:
    """Effective flags: the variant's global profile plus one directory's overrides."""

    profile: FlagProfile
    overrides: Mapping[str, Mapping[FlagKey, tuple[str, ...]]] = field(default_factory=dict)

    def _override(self, directory: str, key: FlagKey) -> tuple[str, ...]:
        return tuple(self.overrides.get(directory, {}).get(key, ()))

    def compile_flags(self, directory: str, language: Language) -> tuple[str, ...]:
        return self.profile.for_key(language) + self._override(directory, language)

    def link_flags(self, directory: str) -> tuple[str, ...]:
        return self.profile.ldflags + self._override(directory, "ld")

    def link_libs(self, directory: str) -> tuple[str, ...]:
        return self._override(directory, "ldlibs") + self.profile.ldlibs

    def fingerprint_requirements(
        self,
        keys: Iterable[tuple[str, Language]],
    ) -> dict[tuple[str, Language], tuple[str, ...]]:
        return {(directory, language): self.compile_flags(directory, language) for directory, language in keys}


@dataclass(slots=True)
class ActionExecutor:
    graph: TargetGraph
    source_root: Path
    output_root: Path
    runner: ToolRunner
    toolchain: Toolchain
    flags: FlagResolver
    store: DependencyStore
    fingerprints: Mapping[tuple[str, Language], Fingerprint] = field(default_factory=dict)
    records: Mapping[str, DependencyRecord] = field(default_factory=dict)
    rewritten_sentinels: Iterable[str] = ()
    variant: str = ""
    env: Mapping[str, str] = field(default_factory=dict)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def run(self, goals: Iterable[str]) -> BuildReport:
        goal_list = tuple(goals)
        report = BuildReport(
            variant=self.variant,
            goals=goal_list,
            rewritten_sentinels=list(self.rewritten_sentinels),
        )
        rebuilt: set[str] = set(report.rewritten_sentinels)
        for target in self.graph.closure(goal_list):
            if target.kind == "sentinel":
                continue
            if target.kind == "marker":
                if self._output_path(target.path).exists():
                    continue
                self._create_marker(target)
                report.actions.append(ActionRecord(kind="marker", target=target.path))
                continue
            if not self._is_stale(target, rebuilt):
                if target.path in self.graph.declared:
                    report.up_to_date.append(target.path)
                continue
            command = self._execute(target)
            rebuilt.add(target.path)
            report.actions.append(ActionRecord(kind=target.kind, target=target.path, command=command))
        return report

    # -- staleness ---------------------------------------------------------

    def _is_stale(self, target: Target, rebuilt: set[str]) -> bool:
        stamps: list[int] = []
        for output in target.all_outputs:
            stamp = mtime_ns(self._output_path(output))
            if stamp is None:
                return True
            stamps.append(stamp)
        oldest = min(stamps)

        for prerequisite in target.prerequisites:
            producer = self.graph.producer(prerequisite)
            if producer is not None and producer.path in rebuilt:
                return True
            stamp = mtime_ns(self._prerequisite_path(prerequisite))
            if stamp is None or stamp > oldest:
                return True

        if target.kind == "object":
            record = self.records.get(target.path)
            fingerprint = self._fingerprint(target)
            if record is None or record.signature != fingerprint.signature:
                return True
        return False

    # -- actions -----------------------------------------------------------

    def _execute(self, target: Target) -> tuple[str, ...]:
        self.logger.announce(
            kind=target.kind,
            variant=self.variant,
            path=target.source or target.path,
            language=target.language,
        )
        self._output_path(target.path).parent.mkdir(parents=True, exist_ok=True)
        if target.kind == "object":
            return self._compile(target)
        if target.kind == "generated-source":
            return self._generate(target)
        if target.kind == "archive":
            return self._archive(target)
        return self._link(target)

    def _compile(self, target: Target) -> tuple[str, ...]:
        language, source_path = _compiled_from(target)
        output = self._output_path(target.path)
        source = self._prerequisite_path(source_path)
        depfile = self.store.depfile_path(target.path)
        # No record may outlive the object it describes.
        remove_if_exists(self.store.record_path(target.path))
        command = (
            self.toolchain.compiler(language),
            *self.flags.compile_flags(target.directory, language),
            "-c",
            str(source),
            "-MMD",
            "-MP",
            "-MT",
            str(output),
            "-MF",
            str(depfile),
            "-o",
            str(temporary_path(output)),
        )
        try:
            self._run_into(command, output, target)
        except ToolExecutionError:
            remove_if_exists(depfile)
            raise
        record = self.store.capture(
            obj=target.path,
            source=source,
            rule_target=str(output),
            signature=self._fingerprint(target).signature,
            cwd=self.output_root,
        )
        self.logger.log(
            operation="record_saved",
            variant=self.variant,
            target=target.path,
            message=f"Recorded {len(record.headers)} headers for {target.path}.",
            level="debug",
        )
        return command

    def _link(self, target: Target) -> tuple[str, ...]:
        output = self._output_path(target.path)
        directory = target.directory
        inputs = [str(self._prerequisite_path(item)) for item in target.prerequisites]
        if target.kind == "binary":
            objects = [item for item in inputs if item.endswith(OBJECT_SUFFIX)]
            archives = [item for item in inputs if item.endswith(ARCHIVE_SUFFIX)]
            command = (
                self.toolchain.cxx,
                "-static",
                *self.flags.link_flags(directory),
                "-o",
                str(temporary_path(output)),
                *objects,
                *archives,
                *self.flags.link_libs(directory),
            )
        else:
            command = (
                self.toolchain.cc,
                "-shared",
                *self.flags.link_flags(directory),
                "-o",
                str(temporary_path(output)),
                *inputs,
                *self.flags.link_libs(directory),
            )
        self._run_into(command, output, target)
        return command

    def _archive(self, target: Target) -> tuple[str, ...]:
        output = self._output_path(target.path)
        remove_if_exists(temporary_path(output))
        command = (
            self.toolchain.ar,
            "rcs",
            str(temporary_path(output)),
            *(str(self._prerequisite_path(item)) for item in target.prerequisites),
        )
        self._run_into(command, output, target)
        return command

    def _generate(self, target: Target) -> tuple[str, ...]:
        _, schema = _compiled_from(target)
        command, _ = generate_sources(
            runner=self.runner,
            toolchain=self.toolchain,
            schema=self._prerequisite_path(schema),
            output_dir=self._output_path(target.path).parent,
            cwd=self.output_root,
            env=self.env,
        )
        return command

    def _create_marker(self, target: Target) -> None:
        path = self._output_path(target.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

    def _run_into(self, command: tuple[str, ...], output: Path, target: Target) -> None:
        """Run *command*, which writes the temporary output, then publish it."""
        tmp_output = temporary_path(output)
        self.logger.log(
            operation="command",
            variant=self.variant,
            target=target.path,
            message=" ".join(command),
            level="debug",
        )
        try:
            result = self.runner.run(command, cwd=self.output_root, env=self.env)
        except BaseException:
            remove_if_exists(tmp_output)
            raise
        if result.returncode != 0 or not tmp_output.exists():
            remove_if_exists(tmp_output)
            raise ToolExecutionError(
                f"Failed to build `{target.path}`.",
                hint="Check the tool output for details.",
                context={
                    "target": target.path,
                    "kind": target.kind,
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[:2000] if result.stderr else "",
                    "command": " ".join(command),
                },
            )
        os.replace(tmp_output, output)

    # -- paths -------------------------------------------------------------

    def _output_path(self, path: str) -> Path:
        return self.output_root / path

    def _prerequisite_path(self, prerequisite: str) -> Path:
        if self.graph.producer(prerequisite) is not None:
            return self._output_path(prerequisite)
        if os.path.isabs(prerequisite):
            return Path(prerequisite)
        return self.source_root / prerequisite

    def _fingerprint(self, target: Target) -> Fingerprint:
        language, _ = _compiled_from(target)
        return self.fingerprints[(target.directory, language)]


def _compiled_from(target: Target) -> tuple[Language, str]:
    if target.language is None or target.source is None:
        raise ValidationError(
            f"Target `{target.path}` has no source to build from.",
            context={"target": target.path, "kind": target.kind},
        )
    return target.language, target.source
