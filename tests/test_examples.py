import shutil
from pathlib import Path

from strata.backends import InProcessToolRunner
from strata.engine import dispatch

EXAMPLES_DIR = Path(__file__).resolve().parents[1] / "examples"


def test_hello_example_builds_and_is_then_up_to_date(tmp_path: Path) -> None:
    root = tmp_path / "hello"
    shutil.copytree(EXAMPLES_DIR / "hello", root)
    runner = InProcessToolRunner()

    first = dispatch(None, source_root=root, env={}, runner=runner)
    assert first is not None
    assert first.executed[-1] == "hello"
    assert sorted(first.actions_of_kind("object")) == ["greet/greet.o", "hello.o"]
    compile_hello = next(action.command for action in first.actions if action.target == "hello.o")
    assert "-Wextra" in compile_hello

    second = dispatch(None, source_root=root, env={}, runner=runner)
    assert second is not None
    assert second.actions == []
