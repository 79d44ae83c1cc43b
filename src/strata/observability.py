"""Structured logging and observability helpers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_LOGGER = logging.getLogger("strata")

# Announce labels, one per action kind, as printed before each build step.
ANNOUNCE_LABELS: dict[str, str] = {
    "binary": "BIN",
    "shared-library": "LIB",
    "archive": "AR",
    "generated-source": "PB",
    "rules": "MK",
}

# Compiles are labelled by source language.
COMPILE_LABELS: dict[str, str] = {"c": "C", "c++": "C++"}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(slots=True)
class StructuredLogger:
    records: list[dict[str, Any]] = field(default_factory=list)
    logger: logging.Logger = field(default=_LOGGER, repr=False)

    def log(
        self,
        *,
        operation: str,
        variant: str | None,
        target: str | None,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "variant": variant,
            "target": target,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        self.records.append(record)
        self.logger.log(_LEVELS.get(level, logging.INFO), message)

    def announce(
        self,
        *,
        kind: str,
        variant: str | None,
        path: str,
        language: str | None = None,
    ) -> None:
        if kind == "object" and language in COMPILE_LABELS:
            label = COMPILE_LABELS[language]
        else:
            label = ANNOUNCE_LABELS.get(kind, kind.upper())
        self.log(
            operation="announce",
            variant=variant,
            target=path,
            message=f"  {label:<4}{path}",
            extra={"kind": kind},
        )

    def records_for_variant(self, variant: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("variant") == variant]

    def records_for_operation(self, operation: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("operation") == operation]

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path
