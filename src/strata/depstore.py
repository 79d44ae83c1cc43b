"""Persisted per-object header dependencies discovered at compile time."""

from __future__ import annotations

import json
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from strata.errors import DependencyRecordError
from strata.fsutil import atomic_write_text, remove_if_exists
from strata.observability import StructuredLogger

RECORD_SUFFIX = ".d.json"
DEPFILE_SUFFIX = ".d.tmp"

# A rule separator is a colon followed by whitespace or end of line.
_SEPARATOR = re.compile(r":(?:\s|$)")


@dataclass(frozen=True, slots=True)
class DependencyRecord:
    object: str
    source: str
    headers: tuple[str, ...] = ()
    signature: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "object": self.object,
            "source": self.source,
            "headers": list(self.headers),
            "signature": self.signature,
        }


def parse_depfile(text: str) -> dict[str, tuple[str, ...]]:
    """Parse a make-style depfile into a map of rule target to prerequisites."""
    rules: dict[str, list[str]] = {}
    joined = text.replace("\\\r\n", " ").replace("\\\n", " ")
    for line in joined.splitlines():
        if not line.strip():
            continue
        match = _SEPARATOR.search(line)
        if match is None:
            raise DependencyRecordError(
                "Malformed depfile line.",
                context={"line": line[:200]},
            )
        prerequisites = _split_words(line[match.end():])
        for target in _split_words(line[: match.start()]):
            rules.setdefault(target, []).extend(prerequisites)
    return {target: tuple(items) for target, items in rules.items()}


def _split_words(text: str) -> list[str]:
    words: list[str] = []
    current: list[str] = []
    index = 0
    while index < len(text):
        char = text[index]
        following = text[index + 1 : index + 2]
        if char == "\\" and following in (" ", "#"):
            current.append(following)
            index += 2
            continue
        if char == "$" and following == "$":
            current.append("$")
            index += 2
            continue
        if char.isspace():
            if current:
                words.append("".join(current))
                current = []
            index += 1
            continue
        current.append(char)
        index += 1
    if current:
        words.append("".join(current))
    return words


@dataclass(slots=True)
class DependencyStore:
    output_root: Path
    variant: str | None = None
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def record_path(self, obj: str) -> Path:
        stem, _ = os.path.splitext(obj)
        return self.output_root / f"{stem}{RECORD_SUFFIX}"

    def depfile_path(self, obj: str) -> Path:
        stem, _ = os.path.splitext(obj)
        return self.output_root / f"{stem}{DEPFILE_SUFFIX}"

    def load(self, obj: str) -> DependencyRecord | None:
        path = self.record_path(obj)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            self._warn_unreadable(obj, path)
            return None
        record = _parse_record(payload)
        if record is None or record.object != obj:
            self._warn_unreadable(obj, path)
            return None
        return record

    def load_all(self, objects: Iterable[str]) -> dict[str, DependencyRecord]:
        records: dict[str, DependencyRecord] = {}
        for obj in objects:
            record = self.load(obj)
            if record is not None:
                records[obj] = record
        return records

    def save(self, record: DependencyRecord) -> Path:
        return atomic_write_text(
            self.record_path(record.object),
            json.dumps(record.to_payload(), indent=2, sort_keys=True) + "\n",
        )

    def capture(
        self,
        *,
        obj: str,
        source: Path,
        rule_target: str,
        signature: str | None,
        cwd: Path,
    ) -> DependencyRecord:
        """Turn the compiler's depfile for *obj* into a persisted record."""
        depfile = self.depfile_path(obj)
        try:
            text = depfile.read_text(encoding="utf-8")
        except FileNotFoundError:
            self.logger.log(
                operation="depfile_missing",
                variant=self.variant,
                target=obj,
                message=f"Compiler wrote no depfile for {obj}.",
                level="warning",
            )
            text = ""
        try:
            rules = parse_depfile(text)
        finally:
            remove_if_exists(depfile)

        prerequisites = rules.get(rule_target)
        if prerequisites is None and len(rules) >= 1:
            prerequisites = next(iter(rules.values()))
        source_key = os.path.normpath(source)
        headers: list[str] = []
        for item in prerequisites or ():
            resolved = os.path.normpath(item if os.path.isabs(item) else cwd / item)
            if resolved != source_key and resolved not in headers:
                headers.append(resolved)

        record = DependencyRecord(
            object=obj,
            source=str(source),
            headers=tuple(headers),
            signature=signature,
        )
        self.save(record)
        return record

    def _warn_unreadable(self, obj: str, path: Path) -> None:
        self.logger.log(
            operation="record_corrupt",
            variant=self.variant,
            target=obj,
            message=f"Ignoring unreadable dependency record {path}.",
            level="warning",
        )


def _parse_record(payload: Any) -> DependencyRecord | None:
    if not isinstance(payload, dict):
        return None
    obj = payload.get("object")
    source = payload.get("source")
    headers = payload.get("headers", [])
    signature = payload.get("signature")
    if not isinstance(obj, str) or not isinstance(source, str):
        return None
    if not isinstance(headers, list) or not all(isinstance(item, str) for item in headers):
        return None
    if signature is not None and not isinstance(signature, str):
        return None
    return DependencyRecord(object=obj, source=source, headers=tuple(headers), signature=signature)
