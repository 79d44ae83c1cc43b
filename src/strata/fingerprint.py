"""Per-directory toolchain flag fingerprints.

For every (directory, language) pair with at least one source, the compiler is
asked to compile an empty translation unit with the directory's full effective
flag set, dumping verbose assembly. The dump names the compiler identity, the
target, and every active (declared or implied) option, so hashing it yields a
signature of everything that can change the generated code.

The signature is persisted as a sentinel file in the mirrored output
directory. Every object of that directory depends on the sentinel, and the
sentinel is rewritten only when the signature changes, so a flag change
recompiles exactly the objects of the affected directory.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from strata.backends.base import ToolRunner
from strata.errors import FingerprintError
from strata.fsutil import atomic_write_text
from strata.models import Language, Toolchain, in_directory
from strata.observability import StructuredLogger

SENTINEL_NAMES: dict[Language, str] = {"c": ".cflags", "c++": ".cxxflags"}


@dataclass(frozen=True, slots=True)
class Fingerprint:
    directory: str
    language: Language
    flags: tuple[str, ...]
    signature: str

    @property
    def sentinel(self) -> str:
        return sentinel_path(self.directory, self.language)

    def to_payload(self) -> dict[str, Any]:
        return {
            "directory": self.directory,
            "language": self.language,
            "flags": list(self.flags),
            "signature": self.signature,
        }


@dataclass(slots=True)
class FingerprintRefresh:
    fingerprints: dict[tuple[str, Language], Fingerprint] = field(default_factory=dict)
    rewritten: list[str] = field(default_factory=list)


def sentinel_path(directory: str, language: Language) -> str:
    return in_directory(directory, SENTINEL_NAMES[language])


def signature_command(toolchain: Toolchain, language: Language, flags: tuple[str, ...]) -> tuple[str, ...]:
    return (
        toolchain.compiler(language),
        *flags,
        "-S",
        "-fverbose-asm",
        "-o",
        "-",
        "-x",
        language,
        "/dev/null",
    )


def compute_signature(
    *,
    runner: ToolRunner,
    toolchain: Toolchain,
    language: Language,
    flags: tuple[str, ...],
    cwd: Path,
    env: Mapping[str, str],
) -> str:
    command = signature_command(toolchain, language, flags)
    result = runner.run(command, cwd=cwd, env=env)
    if result.returncode != 0:
        raise FingerprintError(
            "Compiler failed while computing the flag fingerprint.",
            hint="Check that the compiler exists and accepts the configured flags.",
            context={
                "language": language,
                "returncode": str(result.returncode),
                "stderr": result.stderr[:2000] if result.stderr else "",
                "command": " ".join(command),
            },
        )
    canonical = json.dumps(
        {"dump": result.stdout, "flags": list(flags), "language": language},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class FingerprintOracle:
    runner: ToolRunner
    toolchain: Toolchain
    output_root: Path
    env: Mapping[str, str] = field(default_factory=dict)
    variant: str | None = None
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def read_sentinel(self, directory: str, language: Language) -> Fingerprint | None:
        path = self.output_root / sentinel_path(directory, language)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            self.logger.log(
                operation="sentinel_corrupt",
                variant=self.variant,
                target=sentinel_path(directory, language),
                message=f"Ignoring unreadable sentinel {path}.",
                level="warning",
            )
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("signature"), str):
            return None
        return Fingerprint(
            directory=directory,
            language=language,
            flags=tuple(payload.get("flags") or ()),
            signature=payload["signature"],
        )

    def refresh(
        self,
        requirements: Mapping[tuple[str, Language], tuple[str, ...]],
    ) -> FingerprintRefresh:
        """Recompute every required fingerprint, rewriting sentinels that changed."""
        refresh = FingerprintRefresh()
        for (directory, language), flags in sorted(requirements.items()):
            signature = compute_signature(
                runner=self.runner,
                toolchain=self.toolchain,
                language=language,
                flags=flags,
                cwd=self.output_root,
                env=self.env,
            )
            current = Fingerprint(directory=directory, language=language, flags=flags, signature=signature)
            refresh.fingerprints[(directory, language)] = current
            previous = self.read_sentinel(directory, language)
            if previous is not None and previous.signature == signature:
                continue
            atomic_write_text(
                self.output_root / current.sentinel,
                json.dumps(current.to_payload(), indent=2, sort_keys=True) + "\n",
            )
            refresh.rewritten.append(current.sentinel)
            self.logger.log(
                operation="sentinel_rewritten",
                variant=self.variant,
                target=current.sentinel,
                message=f"Flags changed for {directory} ({language}).",
                level="debug",
                extra={"previous": previous.signature if previous else None, "current": signature},
            )
        return refresh
