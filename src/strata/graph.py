"""Concrete target graph built from aggregated rule declarations."""

from __future__ import annotations

import dataclasses
import posixpath
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from strata.depstore import DependencyRecord
from strata.errors import DuplicateTargetError, UnmatchedSourceError, ValidationError
from strata.fingerprint import sentinel_path
from strata.generate import SCHEMA_SUFFIX, generated_outputs
from strata.models import (
    ALL_GOAL,
    Declared,
    Language,
    RulesDescription,
    Target,
    TargetKind,
    directory_of,
    in_directory,
)

# Source extension -> language of the object pattern rule.
SOURCE_LANGUAGES: dict[str, Language] = {".c": "c", ".cc": "c++", ".cpp": "c++"}
OBJECT_SUFFIX = ".o"
ARCHIVE_SUFFIX = ".a"
SHARED_LIBRARY_SUFFIX = ".so"
MARKER_NAME = ".exists"

DECLARED_KINDS: dict[str, TargetKind] = {
    ARCHIVE_SUFFIX: "archive",
    SHARED_LIBRARY_SUFFIX: "shared-library",
    OBJECT_SUFFIX: "object",
    "": "binary",
}
LINKED_KINDS: frozenset[TargetKind] = frozenset({"archive", "binary", "shared-library"})


@dataclass(frozen=True, slots=True)
class TargetGraph:
    """Targets keyed by path, plus a map from every produced file to its target."""

    targets: Mapping[str, Target]
    producers: Mapping[str, str]
    declared: tuple[str, ...] = ()

    def producer(self, path: str) -> Target | None:
        primary = self.producers.get(path)
        if primary is None:
            return None
        return self.targets[primary]

    def objects(self) -> list[Target]:
        return [target for target in self.targets.values() if target.kind == "object"]

    def fingerprint_keys(self) -> list[tuple[str, Language]]:
        keys = {
            (target.directory, target.language)
            for target in self.objects()
            if target.language is not None
        }
        return sorted(keys)

    def with_recorded_headers(
        self,
        records: Mapping[str, DependencyRecord],
        *,
        output_root: Path,
    ) -> TargetGraph:
        """Return a graph whose objects also depend on their recorded headers."""
        targets = dict(self.targets)
        for obj, record in records.items():
            target = targets.get(obj)
            if target is None or target.kind != "object":
                continue
            extra: list[str] = []
            for header in record.headers:
                prerequisite = self._header_prerequisite(header, output_root)
                if prerequisite == obj or prerequisite in target.prerequisites or prerequisite in extra:
                    continue
                extra.append(prerequisite)
            if extra:
                targets[obj] = dataclasses.replace(
                    target,
                    prerequisites=target.prerequisites + tuple(extra),
                )
        return TargetGraph(targets=targets, producers=self.producers, declared=self.declared)

    def resolve_goals(self, goals: Iterable[str]) -> list[str]:
        resolved: list[str] = []
        for goal in goals:
            if goal == ALL_GOAL:
                candidates = list(self.declared)
            else:
                primary = self.producers.get(posixpath.normpath(goal))
                if primary is None:
                    raise ValidationError(
                        f"No rule to make target `{goal}`.",
                        hint="Declare it with rules.targets() or name a known variant.",
                        context={"goal": goal},
                    )
                candidates = [primary]
            for candidate in candidates:
                if candidate not in resolved:
                    resolved.append(candidate)
        return resolved

    def closure(self, goals: Iterable[str]) -> list[Target]:
        """Targets needed for *goals*, prerequisites always before dependents."""
        order: list[Target] = []
        visited: set[str] = set()

        def visit(path: str) -> None:
            if path in visited:
                return
            visited.add(path)
            target = self.targets[path]
            for prerequisite in (*target.order_only, *target.prerequisites):
                primary = self.producers.get(prerequisite)
                if primary is not None:
                    visit(primary)
            order.append(target)

        for goal in self.resolve_goals(goals):
            visit(goal)
        return order

    def levels(self, goals: Iterable[str]) -> list[list[Target]]:
        """Group the closure into antichains that may run concurrently, in order."""
        depth: dict[str, int] = {}
        grouped: list[list[Target]] = []
        for target in self.closure(goals):
            level = 0
            for prerequisite in (*target.order_only, *target.prerequisites):
                primary = self.producers.get(prerequisite)
                if primary is not None:
                    level = max(level, depth[primary] + 1)
            depth[target.path] = level
            if level == len(grouped):
                grouped.append([])
            grouped[level].append(target)
        return grouped

    def _header_prerequisite(self, header: str, output_root: Path) -> str:
        try:
            relative = Path(header).relative_to(output_root).as_posix()
        except ValueError:
            return header
        return relative if relative in self.producers else header


@dataclass(slots=True)
class GraphBuilder:
    source_root: Path
    description: RulesDescription
    protected: frozenset[str] = frozenset()
    _targets: dict[str, Target] = field(init=False, default_factory=dict, repr=False)
    _producers: dict[str, str] = field(init=False, default_factory=dict, repr=False)
    _declared: dict[str, str] = field(init=False, default_factory=dict, repr=False)

    def build(self) -> TargetGraph:
        self._targets = {}
        self._producers = {}
        self._declared = {}
        for source in self.description.sources:
            self._add_source(source)
        for declared in self.description.targets:
            self._add_declared(declared)
        self._apply_depends()
        self._check_prerequisites()
        self._add_markers()
        graph = TargetGraph(
            targets=dict(self._targets),
            producers=dict(self._producers),
            declared=tuple(self._declared),
        )
        _check_acyclic(graph)
        return graph

    def _add_source(self, declared: Declared) -> None:
        path = declared.path
        self._check_within_root(path, what="source", origin=declared.origin)
        self._check_unprotected(path, origin=declared.origin)
        _, extension = posixpath.splitext(path)
        if extension == SCHEMA_SUFFIX:
            self._check_source_exists(path, origin=declared.origin)
            generated_source, generated_header = generated_outputs(path)
            self._register(
                Target(
                    path=generated_source,
                    kind="generated-source",
                    prerequisites=(path,),
                    outputs=(generated_source, generated_header),
                    language="c++",
                    source=path,
                    origin=declared.origin,
                ),
            )
            self._add_object(generated_source, language="c++", origin=declared.origin)
            return
        language = SOURCE_LANGUAGES.get(extension)
        if language is None:
            raise UnmatchedSourceError(
                f"No pattern rule matches source `{path}`.",
                hint=f"Supported extensions: {', '.join([*SOURCE_LANGUAGES, SCHEMA_SUFFIX])}.",
                context={"source": path, "declared_in": declared.origin},
            )
        self._check_source_exists(path, origin=declared.origin)
        self._add_object(path, language=language, origin=declared.origin)

    def _add_object(self, source: str, *, language: Language, origin: str) -> None:
        stem, _ = posixpath.splitext(source)
        obj = f"{stem}{OBJECT_SUFFIX}"
        sentinel = sentinel_path(directory_of(obj), language)
        self._register(
            Target(
                path=obj,
                kind="object",
                prerequisites=(source, sentinel),
                language=language,
                source=source,
                origin=origin,
            ),
        )
        if sentinel not in self._targets:
            self._register(Target(path=sentinel, kind="sentinel", language=language))

    def _add_declared(self, declared: Declared) -> None:
        path = declared.path
        self._check_within_root(path, what="target", origin=declared.origin)
        self._check_unprotected(path, origin=declared.origin)
        if path in self._declared:
            raise _duplicate(path, first=self._declared[path], second=declared.origin)

        _, suffix = posixpath.splitext(path)
        kind = DECLARED_KINDS.get(suffix)
        if kind is None:
            raise ValidationError(
                f"Cannot infer the kind of target `{path}`.",
                hint="Targets are binaries (no suffix), .a archives, .so libraries or .o objects.",
                context={"target": path, "declared_in": declared.origin},
            )
        if kind == "object":
            existing = self._targets.get(path)
            if existing is None or existing.kind != "object":
                raise ValidationError(
                    f"Object target `{path}` has no declared source.",
                    context={"target": path, "declared_in": declared.origin},
                )
        else:
            if path in self._producers:
                owner = self._targets[self._producers[path]]
                raise _duplicate(path, first=owner.origin or ".", second=declared.origin)
            prerequisites: tuple[str, ...] = ()
            stem_object = f"{path}{OBJECT_SUFFIX}"
            if kind == "binary" and stem_object in self._targets:
                prerequisites = (stem_object,)
            self._register(
                Target(path=path, kind=kind, prerequisites=prerequisites, origin=declared.origin),
            )
        self._declared[path] = declared.origin

    def _apply_depends(self) -> None:
        for path, extra in self.description.depends.items():
            primary = self._producers.get(path)
            target = self._targets.get(primary) if primary is not None else None
            if target is None or target.kind in ("sentinel", "marker"):
                raise ValidationError(
                    f"Dependencies declared for unknown target `{path}`.",
                    hint="Declare the target with rules.targets() or list its source.",
                    context={"target": path},
                )
            merged = list(target.prerequisites)
            for prerequisite in extra:
                if prerequisite not in merged:
                    merged.append(prerequisite)
            self._targets[target.path] = dataclasses.replace(target, prerequisites=tuple(merged))

        for target in self._targets.values():
            if target.kind in LINKED_KINDS and not target.prerequisites:
                raise ValidationError(
                    f"Target `{target.path}` has nothing to link.",
                    hint="List its objects or archives with rules.depends().",
                    context={"target": target.path, "declared_in": target.origin or "."},
                )

    def _check_prerequisites(self) -> None:
        for target in self._targets.values():
            for prerequisite in target.prerequisites:
                if prerequisite in self._producers:
                    continue
                if posixpath.isabs(prerequisite):
                    exists = Path(prerequisite).exists()
                else:
                    exists = (self.source_root / prerequisite).is_file()
                if not exists:
                    raise ValidationError(
                        f"No rule to make `{prerequisite}`, needed by `{target.path}`.",
                        context={"target": target.path, "prerequisite": prerequisite},
                    )

    def _add_markers(self) -> None:
        for path, target in list(self._targets.items()):
            if target.kind in ("sentinel", "marker"):
                continue
            marker = in_directory(target.directory, MARKER_NAME)
            if marker not in self._targets:
                self._register(Target(path=marker, kind="marker"))
            self._targets[path] = dataclasses.replace(target, order_only=(marker,))

    def _register(self, target: Target) -> None:
        for output in target.all_outputs:
            if output in self._producers:
                owner = self._targets[self._producers[output]]
                raise _duplicate(output, first=owner.origin or ".", second=target.origin or ".")
        self._targets[target.path] = target
        for output in target.all_outputs:
            self._producers[output] = target.path

    def _check_within_root(self, path: str, *, what: str, origin: str) -> None:
        if path == ".." or path.startswith("../"):
            raise ValidationError(
                f"Declared {what} `{path}` lies outside the source root.",
                context={what: path, "declared_in": origin},
            )

    def _check_unprotected(self, path: str, *, origin: str) -> None:
        if path in self.protected:
            raise ValidationError(
                f"`{path}` is a build description and cannot be built.",
                context={"path": path, "declared_in": origin},
            )

    def _check_source_exists(self, path: str, *, origin: str) -> None:
        if not (self.source_root / path).is_file():
            raise ValidationError(
                f"Declared source `{path}` does not exist.",
                context={"source": path, "declared_in": origin},
            )


def build_graph(
    description: RulesDescription,
    *,
    source_root: Path,
    protected: Iterable[str] = (),
) -> TargetGraph:
    builder = GraphBuilder(
        source_root=source_root,
        description=description,
        protected=frozenset(protected) | frozenset(description.rules_files),
    )
    return builder.build()


def _duplicate(path: str, *, first: str, second: str) -> DuplicateTargetError:
    return DuplicateTargetError(
        f"Duplicate target `{path}`.",
        hint="Each output path may be declared by exactly one directory.",
        context={"target": path, "first_declared_in": first, "second_declared_in": second},
    )


def _check_acyclic(graph: TargetGraph) -> None:
    visited: set[str] = set()
    stack: list[str] = []
    on_stack: set[str] = set()

    def visit(path: str) -> None:
        visited.add(path)
        stack.append(path)
        on_stack.add(path)
        target = graph.targets[path]
        for prerequisite in (*target.order_only, *target.prerequisites):
            primary = graph.producers.get(prerequisite)
            if primary is None:
                continue
            if primary in on_stack:
                cycle = stack[stack.index(primary) :] + [primary]
                raise ValidationError(
                    "Circular dependency between targets.",
                    context={"cycle": " -> ".join(cycle)},
                )
            if primary not in visited:
                visit(primary)
        stack.pop()
        on_stack.discard(path)

    for path in graph.targets:
        if path not in visited:
            visit(path)
