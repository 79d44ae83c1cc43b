"""Project configuration: tool paths, global flags and variant profiles.

The optional ``strata.yaml`` file at the source root (or the file named by
``STRATA_CONFIG``) is loaded with PyYAML and validated into frozen dataclasses::

    tools: {cc: gcc, cxx: g++, ar: ar, protoc: protoc}
    tool_path: /opt/toolchain/bin
    flags: {cflags: [-Wall], cxxflags: [-Wall], ldflags: [], ldlibs: [-lm]}
    variants:
      asan: {cflags: [-g, -fsanitize=address], ldflags: [-fsanitize=address]}
"""

from __future__ import annotations

import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from strata.errors import ConfigError
from strata.models import FlagProfile, Toolchain, VariantProfile

CONFIG_FILENAME = "strata.yaml"
CONFIG_ENV = "STRATA_CONFIG"
TOOLS_ENV = "STRATA_TOOLS"

DEFAULT_VARIANT = "release"
DEBUG_VARIANT = "debug"
RESERVED_GOALS = frozenset({"all", "clean"})

DEFAULT_VARIANTS: dict[str, VariantProfile] = {
    "release": VariantProfile(
        flags=FlagProfile(cflags=("-g", "-O1"), cxxflags=("-g", "-O1"), ldflags=("-g",)),
    ),
    "debug": VariantProfile(
        flags=FlagProfile(cflags=("-g",), cxxflags=("-g",), ldflags=("-g",)),
    ),
    "coverage": VariantProfile(
        flags=FlagProfile(
            cflags=("--coverage",),
            cxxflags=("--coverage",),
            ldflags=("--coverage",),
        ),
        env={"CCACHE_DISABLE": "true"},
    ),
}

_FLAG_FIELDS = ("cflags", "cxxflags", "ldflags", "ldlibs")
_TOOL_FIELDS = ("cc", "cxx", "ar", "protoc")


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    toolchain: Toolchain = field(default_factory=Toolchain)
    flags: FlagProfile = field(default_factory=FlagProfile)
    variants: Mapping[str, VariantProfile] = field(default_factory=lambda: dict(DEFAULT_VARIANTS))
    path: Path | None = None

    def variant_profile(self, name: str) -> VariantProfile:
        try:
            return self.variants[name]
        except KeyError as exc:
            raise ConfigError(
                f"Unknown build variant `{name}`.",
                hint="Use one of the configured variants.",
                context={"variants": ",".join(sorted(self.variants))},
            ) from exc


def resolve_config_path(
    path: str | Path | None,
    *,
    source_root: Path,
    env: Mapping[str, str],
) -> Path | None:
    if path is not None:
        return Path(path)
    if env.get(CONFIG_ENV):
        return Path(env[CONFIG_ENV])
    candidate = source_root / CONFIG_FILENAME
    return candidate if candidate.exists() else None


def load_config(
    path: str | Path | None = None,
    *,
    source_root: Path,
    env: Mapping[str, str],
) -> ProjectConfig:
    config_path = resolve_config_path(path, source_root=source_root, env=env)
    payload: dict[str, Any] = {}
    if config_path is not None:
        payload = _read_payload(config_path)

    tools = _optional_mapping(payload, "tools")
    unknown_tools = sorted(set(tools) - set(_TOOL_FIELDS))
    if unknown_tools:
        raise ConfigError(
            "Unknown tool names in config.",
            context={"path": str(config_path), "tools": ",".join(unknown_tools)},
        )
    toolchain = Toolchain(**{name: _required_str(tools, name) for name in tools})

    tool_path_value = env.get(TOOLS_ENV) or payload.get("tool_path")
    if tool_path_value is not None and not isinstance(tool_path_value, str):
        raise ConfigError("Invalid config `tool_path` value.", context={"path": str(config_path)})
    if tool_path_value:
        toolchain = toolchain.with_tool_path(Path(tool_path_value))

    variants = dict(DEFAULT_VARIANTS)
    for name, raw in _optional_mapping(payload, "variants").items():
        if not isinstance(name, str) or not name or name in RESERVED_GOALS:
            raise ConfigError(
                f"Invalid variant name `{name}`.",
                hint="Variant names must be non-empty and not `all` or `clean`.",
                context={"path": str(config_path)},
            )
        if not isinstance(raw, dict):
            raise ConfigError(f"Invalid definition for variant `{name}`.")
        env_overrides = _optional_mapping(raw, "env")
        variants[name] = VariantProfile(
            flags=_parse_flags(raw, where=f"variants.{name}"),
            env={str(key): str(value) for key, value in env_overrides.items()},
        )

    return ProjectConfig(
        toolchain=toolchain,
        flags=_parse_flags(_optional_mapping(payload, "flags"), where="flags"),
        variants=variants,
        path=config_path,
    )


def _read_payload(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(
            "Config file does not exist.",
            hint=f"Create {CONFIG_FILENAME} or unset {CONFIG_ENV}.",
            context={"path": str(path)},
        ) from exc
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError("Config file is not valid YAML.", hint=str(exc), context={"path": str(path)}) from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigError("Config file must contain a mapping.", context={"path": str(path)})
    return parsed


def _parse_flags(payload: Mapping[str, Any], *, where: str) -> FlagProfile:
    values: dict[str, tuple[str, ...]] = {}
    for name in _FLAG_FIELDS:
        raw = payload.get(name)
        if raw is None:
            continue
        if isinstance(raw, str):
            values[name] = tuple(shlex.split(raw))
        elif isinstance(raw, list) and all(isinstance(item, str) for item in raw):
            values[name] = tuple(raw)
        else:
            raise ConfigError(f"Invalid config `{where}.{name}` value.")
    return FlagProfile(**values)


def _optional_mapping(payload: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid config `{key}` value.")
    return value


def _required_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Invalid config `{key}` value.")
    return value
