"""Engine entry points: one full incremental build of one variant."""

from __future__ import annotations

import json
import os
import posixpath
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from strata.backends.base import ToolRunner
from strata.backends.local import LocalToolRunner
from strata.config import CONFIG_FILENAME, ProjectConfig, load_config
from strata.depstore import DependencyStore
from strata.executor import ActionExecutor, FlagResolver
from strata.fingerprint import FingerprintOracle
from strata.fsutil import atomic_write_text
from strata.graph import TargetGraph, build_graph
from strata.loader import RULES_FILENAME, load_rules
from strata.models import ALL_GOAL, BuildReport, RulesDescription, Variant
from strata.observability import StructuredLogger
from strata.variants import CLEAN_GOAL, clean, ensure_output_tree, select_variant

REPORT_FILENAME = "build-report.json"


@dataclass(slots=True)
class Engine:
    """Runs the loader, graph builder, fingerprint oracle and executor for one variant."""

    source_root: Path
    variant: Variant
    config: ProjectConfig = field(default_factory=ProjectConfig)
    runner: ToolRunner = field(default_factory=LocalToolRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    @property
    def output_root(self) -> Path:
        return self.variant.output_root

    def load(self) -> RulesDescription:
        return load_rules(self.source_root, logger=self.logger)

    def graph(self, description: RulesDescription | None = None) -> TargetGraph:
        if description is None:
            description = self.load()
        return build_graph(
            description,
            source_root=self.source_root,
            protected=self._protected_paths(),
        )

    def build(self, goals: Iterable[str] = (ALL_GOAL,)) -> BuildReport:
        requested = tuple(goals) or (ALL_GOAL,)
        buildable = tuple(goal for goal in requested if not self._is_build_description(goal))
        for goal in requested:
            if goal not in buildable:
                self.logger.log(
                    operation="goal_skipped",
                    variant=self.variant.name,
                    target=goal,
                    message=f"`{goal}` is a build description; nothing to be done.",
                )
        if not buildable:
            return BuildReport(variant=self.variant.name, goals=requested)

        ensure_output_tree(self.variant)
        self.logger.log(
            operation="build_start",
            variant=self.variant.name,
            target=None,
            message=f"Building to {self._display(self.output_root)}",
        )
        description = self.load()
        graph = self.graph(description)
        flags = FlagResolver(profile=self.variant.flags, overrides=description.flags)
        tool_env = {**self.env, **self.variant.env}

        oracle = FingerprintOracle(
            runner=self.runner,
            toolchain=self.config.toolchain,
            output_root=self.output_root,
            env=tool_env,
            variant=self.variant.name,
            logger=self.logger,
        )
        refresh = oracle.refresh(flags.fingerprint_requirements(graph.fingerprint_keys()))

        store = DependencyStore(self.output_root, variant=self.variant.name, logger=self.logger)
        records = store.load_all(target.path for target in graph.objects())
        graph = graph.with_recorded_headers(records, output_root=self.output_root)

        executor = ActionExecutor(
            graph=graph,
            source_root=self.source_root,
            output_root=self.output_root,
            runner=self.runner,
            toolchain=self.config.toolchain,
            flags=flags,
            store=store,
            fingerprints=refresh.fingerprints,
            records=records,
            rewritten_sentinels=refresh.rewritten,
            variant=self.variant.name,
            env=tool_env,
            logger=self.logger,
        )
        report = executor.run(buildable)
        report.report_path = atomic_write_text(
            self.output_root / REPORT_FILENAME,
            json.dumps(report.to_payload(), indent=2, sort_keys=True) + "\n",
        )
        self.logger.log(
            operation="build_complete",
            variant=self.variant.name,
            target=None,
            message=f"{len(report.actions)} actions executed.",
            level="debug",
        )
        return report

    def _protected_paths(self) -> tuple[str, ...]:
        protected = [CONFIG_FILENAME]
        if self.config.path is not None:
            config_path = self.config.path.resolve()
            root = self.source_root.resolve()
            if config_path.is_relative_to(root):
                protected.append(config_path.relative_to(root).as_posix())
        return tuple(protected)

    def _is_build_description(self, goal: str) -> bool:
        normalized = posixpath.normpath(goal)
        return posixpath.basename(normalized) == RULES_FILENAME or normalized in self._protected_paths()

    def _display(self, path: Path) -> str:
        if path.is_relative_to(self.source_root):
            return path.relative_to(self.source_root).as_posix()
        return str(path)


def dispatch(
    goal: str | None,
    *,
    source_root: Path,
    env: Mapping[str, str] | None = None,
    config: ProjectConfig | None = None,
    config_path: str | Path | None = None,
    runner: ToolRunner | None = None,
    logger: StructuredLogger | None = None,
) -> BuildReport | None:
    """Run one top-level goal. Returns ``None`` for ``clean``."""
    environment = dict(os.environ) if env is None else dict(env)
    active_logger = logger or StructuredLogger()
    if goal == CLEAN_GOAL:
        removed = clean(source_root)
        active_logger.log(
            operation="clean",
            variant=None,
            target=None,
            message="Removed all variant output trees." if removed else "Nothing to clean.",
        )
        return None

    if config is None:
        config = load_config(config_path, source_root=source_root, env=environment)
    variant, inner_goal = select_variant(goal, env=environment, config=config, source_root=source_root)
    engine = Engine(
        source_root=source_root,
        variant=variant,
        config=config,
        runner=runner or LocalToolRunner(),
        logger=active_logger,
        env=environment,
    )
    return engine.build((inner_goal,))
