"""Scoped loading of per-directory ``Rules.py`` build descriptions.

Every directory holding a ``Rules.py`` gets its own :class:`Scope` on an
explicit stack. A description's nested descriptions are loaded while its scope
is still on the stack, so a deeper directory is fully merged into its parent
before the parent scope closes. Merging applies two policies:

- sources, targets and explicit dependencies are appended to the parent with
  every path rewritten to be relative to the parent's directory;
- flag overrides are stored in a map keyed by the declaring directory and are
  never concatenated with a sibling's or ancestor's flags.

A description is plain Python evaluated with one name in scope, ``rules``::

    rules.sources("main.c", "util.c")
    rules.targets("app")
    rules.depends("app", ["util.o", "sub/libsub.a"])
    rules.flags("c", "-DNDEBUG", "-Wall")
    rules.flags("ldlibs", "-lm")
"""

from __future__ import annotations

import posixpath
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

from strata.errors import RulesError, StrataError, ValidationError
from strata.models import FLAG_KEYS, Declared, FlagKey, RulesDescription, in_directory
from strata.observability import StructuredLogger

RULES_FILENAME = "Rules.py"

# Top-level output base, never searched for descriptions.
_OUTPUT_DIRNAME = "build"


@dataclass(slots=True)
class Scope:
    """Declarations local to one directory while its description is loading.

    Paths in ``sources``, ``targets`` and ``depends`` are relative to
    ``directory`` until merged upward; ``nested_flags`` is keyed by
    root-relative directory.
    """

    directory: str
    sources: list[Declared] = field(default_factory=list)
    targets: list[Declared] = field(default_factory=list)
    depends: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)
    flags: dict[FlagKey, tuple[str, ...]] = field(default_factory=dict)
    nested_flags: dict[str, dict[FlagKey, tuple[str, ...]]] = field(default_factory=dict)
    rules_files: list[str] = field(default_factory=list)

    def merge_child(self, child: Scope) -> None:
        prefix = _relative_dir(child.directory, self.directory)
        self.sources.extend(
            Declared(path=_prefixed(prefix, item.path), origin=item.origin) for item in child.sources
        )
        self.targets.extend(
            Declared(path=_prefixed(prefix, item.path), origin=item.origin) for item in child.targets
        )
        self.depends.extend(
            (_prefixed(prefix, target), tuple(_prefixed(prefix, item) for item in prerequisites))
            for target, prerequisites in child.depends
        )
        if child.flags:
            self.nested_flags[child.directory] = dict(child.flags)
        self.nested_flags.update(child.nested_flags)
        self.rules_files.extend(child.rules_files)


class RulesApi:
    """The ``rules`` object a description declares into."""

    __slots__ = ("_scope",)

    def __init__(self, scope: Scope) -> None:
        self._scope = scope

    @property
    def directory(self) -> str:
        return self._scope.directory

    def sources(self, *paths: str) -> None:
        for path in _checked_paths(paths, what="source"):
            self._scope.sources.append(Declared(path=path, origin=self._scope.directory))

    def targets(self, *paths: str) -> None:
        for path in _checked_paths(paths, what="target"):
            self._scope.targets.append(Declared(path=path, origin=self._scope.directory))

    def depends(self, targets: str | Sequence[str], prerequisites: str | Sequence[str]) -> None:
        target_paths = _checked_paths(_as_tuple(targets), what="target")
        prerequisite_paths = tuple(
            path if posixpath.isabs(path) else _normalize(path)
            for path in _as_tuple(prerequisites)
        )
        for target in target_paths:
            self._scope.depends.append((target, prerequisite_paths))

    def flags(self, language: str, *flags: str) -> None:
        if language not in FLAG_KEYS:
            raise ValidationError(
                f"Unknown flag language `{language}`.",
                hint=f"Use one of: {', '.join(FLAG_KEYS)}.",
                context={"directory": self._scope.directory},
            )
        key = cast(FlagKey, language)
        self._scope.flags[key] = self._scope.flags.get(key, ()) + tuple(flags)


@dataclass(slots=True)
class RuleLoader:
    source_root: Path
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    _stack: list[Scope] = field(init=False, default_factory=list, repr=False)

    def discover(self) -> list[str]:
        """Find every description under the source root, as root-relative directories."""
        found: list[str] = []
        for path in self.source_root.rglob(RULES_FILENAME):
            relative = path.relative_to(self.source_root)
            if _is_skipped(relative.parts[:-1]):
                continue
            found.append(relative.parent.as_posix())
        return sorted(found)

    def load(self) -> RulesDescription:
        described = self.discover()
        children = _nest(described)
        self._stack = []
        root = self._push(".")
        if "." in described:
            self._evaluate(root)
        for child in children.get(".", []):
            self._visit(child, children)
        self._stack.pop()

        flags = dict(root.nested_flags)
        if root.flags:
            flags["."] = dict(root.flags)
        depends: dict[str, tuple[str, ...]] = {}
        for target, prerequisites in root.depends:
            depends[target] = depends.get(target, ()) + prerequisites
        return RulesDescription(
            sources=tuple(root.sources),
            targets=tuple(root.targets),
            flags=flags,
            depends=depends,
            rules_files=tuple(root.rules_files),
        )

    def _visit(self, directory: str, children: dict[str, list[str]]) -> None:
        scope = self._push(directory)
        self._evaluate(scope)
        for child in children.get(directory, []):
            self._visit(child, children)
        self._stack.pop()
        self._stack[-1].merge_child(scope)

    def _push(self, directory: str) -> Scope:
        scope = Scope(directory=directory)
        self._stack.append(scope)
        return scope

    def _evaluate(self, scope: Scope) -> None:
        rules_rel = in_directory(scope.directory, RULES_FILENAME)
        rules_path = self.source_root / rules_rel
        self.logger.announce(kind="rules", variant=None, path=rules_rel)
        namespace = {"__file__": str(rules_path), "__name__": "__rules__", "rules": RulesApi(scope)}
        try:
            code = compile(rules_path.read_text(encoding="utf-8"), str(rules_path), "exec")
            exec(code, namespace)
        except StrataError:
            raise
        except Exception as exc:
            raise RulesError(
                f"Failed to evaluate {rules_rel}.",
                hint=f"{type(exc).__name__}: {exc}",
                context={"path": rules_rel},
            ) from exc
        scope.rules_files.append(rules_rel)


def load_rules(source_root: Path, *, logger: StructuredLogger | None = None) -> RulesDescription:
    loader = RuleLoader(source_root=source_root, logger=logger or StructuredLogger())
    return loader.load()


def _nest(described: Iterable[str]) -> dict[str, list[str]]:
    """Map each described directory to its nearest described descendants."""
    known = set(described)
    children: dict[str, list[str]] = {}
    for directory in sorted(known):
        if directory == ".":
            continue
        parent = posixpath.dirname(directory) or "."
        while parent != "." and parent not in known:
            parent = posixpath.dirname(parent) or "."
        children.setdefault(parent, []).append(directory)
    return children


def _is_skipped(parts: tuple[str, ...]) -> bool:
    if parts and parts[0] == _OUTPUT_DIRNAME:
        return True
    return any(part.startswith(".") for part in parts)


def _relative_dir(child: str, parent: str) -> str:
    return posixpath.relpath(child, parent)


def _prefixed(prefix: str, path: str) -> str:
    if posixpath.isabs(path):
        return path
    return _normalize(posixpath.join(prefix, path))


def _normalize(path: str) -> str:
    return posixpath.normpath(path)


def _as_tuple(value: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _checked_paths(paths: Iterable[str], *, what: str) -> tuple[str, ...]:
    checked: list[str] = []
    for path in paths:
        if not isinstance(path, str) or not path:
            raise ValidationError(f"Declared {what} paths must be non-empty strings.")
        if posixpath.isabs(path):
            raise ValidationError(
                f"Declared {what} paths must be relative.",
                context={what: path},
            )
        checked.append(_normalize(path))
    return tuple(checked)
