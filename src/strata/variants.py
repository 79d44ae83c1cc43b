"""Variant selection and per-variant output trees."""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from pathlib import Path

from strata.config import DEBUG_VARIANT, DEFAULT_VARIANT, ProjectConfig
from strata.errors import ConfigError
from strata.models import ALL_GOAL, Variant

OUTPUT_DIRNAME = "build"
CLEAN_GOAL = "clean"
BUILD_TYPE_ENV = "BUILD_TYPE"
DEBUG_ENV = "DEBUG"


def output_base(source_root: Path) -> Path:
    return source_root / OUTPUT_DIRNAME


def make_variant(name: str, *, config: ProjectConfig, source_root: Path) -> Variant:
    profile = config.variant_profile(name)
    return Variant(
        name=name,
        flags=profile.flags.extended(config.flags),
        output_root=output_base(source_root) / name,
        env=dict(profile.env),
    )


def default_variant_name(env: Mapping[str, str], config: ProjectConfig) -> str:
    requested = env.get(BUILD_TYPE_ENV)
    if requested:
        if requested not in config.variants:
            raise ConfigError(
                f"{BUILD_TYPE_ENV} names an unknown variant `{requested}`.",
                context={"variants": ",".join(sorted(config.variants))},
            )
        return requested
    if env.get(DEBUG_ENV):
        return DEBUG_VARIANT
    return DEFAULT_VARIANT


def select_variant(
    goal: str | None,
    *,
    env: Mapping[str, str],
    config: ProjectConfig,
    source_root: Path,
) -> tuple[Variant, str]:
    """Pick the variant for *goal* and return it with the goal to build inside it.

    A goal naming a variant selects it and builds everything; any other goal is
    forwarded unchanged into the environment's default variant.
    """
    if goal is not None and goal in config.variants:
        return make_variant(goal, config=config, source_root=source_root), ALL_GOAL
    name = default_variant_name(env, config)
    return make_variant(name, config=config, source_root=source_root), goal or ALL_GOAL


def ensure_output_tree(variant: Variant) -> Path:
    variant.output_root.mkdir(parents=True, exist_ok=True)
    return variant.output_root


def clean(source_root: Path) -> bool:
    """Remove every variant output tree. Returns whether anything was removed."""
    base = output_base(source_root)
    if not base.exists():
        return False
    shutil.rmtree(base)
    return True
