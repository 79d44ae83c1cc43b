"""Typed engine error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across the engine and CLI."""

    VALIDATION = "E_VALIDATION"
    CONFIG = "E_CONFIG"
    RULES = "E_RULES"
    UNMATCHED_SOURCE = "E_UNMATCHED_SOURCE"
    DUPLICATE_TARGET = "E_DUPLICATE_TARGET"
    TOOL_EXECUTION = "E_TOOL_EXECUTION"
    FINGERPRINT = "E_FINGERPRINT"
    DEPENDENCY_RECORD = "E_DEPENDENCY_RECORD"


class StrataError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(StrataError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class ConfigError(StrataError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONFIG, hint=hint, context=context)


class RulesError(StrataError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.RULES, hint=hint, context=context)


class UnmatchedSourceError(StrataError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.UNMATCHED_SOURCE, hint=hint, context=context)


class DuplicateTargetError(StrataError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DUPLICATE_TARGET, hint=hint, context=context)


class ToolExecutionError(StrataError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.TOOL_EXECUTION, hint=hint, context=context)


class FingerprintError(StrataError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.FINGERPRINT, hint=hint, context=context)


class DependencyRecordError(StrataError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DEPENDENCY_RECORD, hint=hint, context=context)


__all__ = [
    "ConfigError",
    "DependencyRecordError",
    "DuplicateTargetError",
    "ErrorCode",
    "FingerprintError",
    "RulesError",
    "StrataError",
    "ToolExecutionError",
    "UnmatchedSourceError",
    "ValidationError",
]
