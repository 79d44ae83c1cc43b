"""Core typed dataclasses for variants, declarations, targets and build results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

Language = Literal["c", "c++"]
FlagKey = Literal["c", "c++", "ld", "ldlibs"]
TargetKind = Literal[
    "object",
    "archive",
    "binary",
    "shared-library",
    "generated-source",
    "sentinel",
    "marker",
]

FLAG_KEYS: tuple[FlagKey, ...] = ("c", "c++", "ld", "ldlibs")
LANGUAGES: tuple[Language, ...] = ("c", "c++")

# Pseudo-goal building every declared target.
ALL_GOAL = "all"


@dataclass(frozen=True, slots=True)
class FlagProfile:
    """A complete set of toolchain flags, one tuple per flag key."""

    cflags: tuple[str, ...] = ()
    cxxflags: tuple[str, ...] = ()
    ldflags: tuple[str, ...] = ()
    ldlibs: tuple[str, ...] = ()

    def for_key(self, key: FlagKey) -> tuple[str, ...]:
        if key == "c":
            return self.cflags
        if key == "c++":
            return self.cxxflags
        if key == "ld":
            return self.ldflags
        return self.ldlibs

    def extended(self, other: FlagProfile) -> FlagProfile:
        """Append *other* flags, except libraries which *other* prepends."""
        return FlagProfile(
            cflags=self.cflags + other.cflags,
            cxxflags=self.cxxflags + other.cxxflags,
            ldflags=self.ldflags + other.ldflags,
            ldlibs=other.ldlibs + self.ldlibs,
        )


@dataclass(frozen=True, slots=True)
class VariantProfile:
    flags: FlagProfile = field(default_factory=FlagProfile)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Variant:
    """A named build configuration with its own isolated output tree."""

    name: str
    flags: FlagProfile
    output_root: Path
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Toolchain:
    cc: str = "cc"
    cxx: str = "c++"
    ar: str = "ar"
    protoc: str = "protoc"

    def compiler(self, language: Language) -> str:
        return self.cc if language == "c" else self.cxx

    def with_tool_path(self, tool_path: Path | None) -> Toolchain:
        """Resolve bare tool names against *tool_path*."""
        if tool_path is None:
            return self

        def _resolve(tool: str) -> str:
            if "/" in tool:
                return tool
            return str(tool_path / tool)

        return Toolchain(
            cc=_resolve(self.cc),
            cxx=_resolve(self.cxx),
            ar=_resolve(self.ar),
            protoc=_resolve(self.protoc),
        )


@dataclass(frozen=True, slots=True)
class Declared:
    """A declared path together with the directory whose rules declared it."""

    path: str
    origin: str


@dataclass(frozen=True, slots=True)
class RulesDescription:
    """Aggregated declarations of the whole tree, relative to the source root."""

    sources: tuple[Declared, ...] = ()
    targets: tuple[Declared, ...] = ()
    flags: Mapping[str, Mapping[FlagKey, tuple[str, ...]]] = field(default_factory=dict)
    depends: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    rules_files: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Target:
    """A buildable artifact identified by its output path.

    ``outputs`` lists every file the action produces, primary path first.
    ``order_only`` prerequisites must exist but never make the target stale.
    """

    path: str
    kind: TargetKind
    prerequisites: tuple[str, ...] = ()
    order_only: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    language: Language | None = None
    source: str | None = None
    origin: str | None = None

    @property
    def directory(self) -> str:
        return directory_of(self.path)

    @property
    def all_outputs(self) -> tuple[str, ...]:
        return self.outputs or (self.path,)


@dataclass(frozen=True, slots=True)
class ActionRecord:
    kind: TargetKind
    target: str
    command: tuple[str, ...] = ()


@dataclass(slots=True)
class BuildReport:
    variant: str
    goals: tuple[str, ...]
    actions: list[ActionRecord] = field(default_factory=list)
    up_to_date: list[str] = field(default_factory=list)
    rewritten_sentinels: list[str] = field(default_factory=list)
    report_path: Path | None = None

    @property
    def executed(self) -> list[str]:
        return [action.target for action in self.actions]

    def actions_of_kind(self, kind: TargetKind) -> list[str]:
        return [action.target for action in self.actions if action.kind == kind]

    def to_payload(self) -> dict[str, object]:
        return {
            "variant": self.variant,
            "goals": list(self.goals),
            "actions": [
                {"kind": action.kind, "target": action.target, "command": list(action.command)}
                for action in self.actions
            ],
            "up_to_date": list(self.up_to_date),
            "rewritten_sentinels": list(self.rewritten_sentinels),
        }


def directory_of(path: str) -> str:
    """Return the root-relative directory of a root-relative path ("." for the root)."""
    head, _, _ = path.rpartition("/")
    return head or "."


def in_directory(directory: str, name: str) -> str:
    if directory == ".":
        return name
    return f"{directory}/{name}"
