"""Public package entrypoint for the strata build engine."""

from .config import ProjectConfig, load_config
from .engine import Engine, dispatch
from .errors import (
    ConfigError,
    DependencyRecordError,
    DuplicateTargetError,
    FingerprintError,
    RulesError,
    StrataError,
    ToolExecutionError,
    UnmatchedSourceError,
    ValidationError,
)
from .graph import TargetGraph, build_graph
from .loader import load_rules
from .models import BuildReport, FlagProfile, RulesDescription, Target, Toolchain, Variant
from .variants import select_variant

__all__ = [
    "BuildReport",
    "ConfigError",
    "DependencyRecordError",
    "DuplicateTargetError",
    "Engine",
    "FingerprintError",
    "FlagProfile",
    "ProjectConfig",
    "RulesDescription",
    "RulesError",
    "StrataError",
    "Target",
    "TargetGraph",
    "Toolchain",
    "ToolExecutionError",
    "UnmatchedSourceError",
    "ValidationError",
    "Variant",
    "build_graph",
    "dispatch",
    "load_config",
    "load_rules",
    "select_variant",
]
