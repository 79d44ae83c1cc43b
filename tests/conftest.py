"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from strata.backends import InProcessToolRunner
from strata.config import ProjectConfig
from strata.engine import Engine
from strata.observability import StructuredLogger
from strata.variants import make_variant

WriteTree = Callable[[dict[str, str]], None]
MakeEngine = Callable[..., Engine]


@pytest.fixture
def inprocess_runner() -> InProcessToolRunner:
    """Provide an in-process tool runner for tests that execute builds."""
    return InProcessToolRunner()


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def write_tree(source_root: Path) -> WriteTree:
    """Write ``{relative path: content}`` files under the source root."""

    def _write(files: dict[str, str]) -> None:
        for relative, content in files.items():
            path = source_root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

    return _write


@pytest.fixture
def make_engine(source_root: Path, inprocess_runner: InProcessToolRunner) -> MakeEngine:
    def _make(variant: str = "release", config: ProjectConfig | None = None) -> Engine:
        project_config = config or ProjectConfig()
        return Engine(
            source_root=source_root,
            variant=make_variant(variant, config=project_config, source_root=source_root),
            config=project_config,
            runner=inprocess_runner,
            logger=StructuredLogger(),
            env={},
        )

    return _make

