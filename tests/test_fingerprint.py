import json
from pathlib import Path

import pytest

from strata.backends import InProcessToolRunner
from strata.errors import FingerprintError
from strata.fingerprint import FingerprintOracle, compute_signature, sentinel_path, signature_command
from strata.models import Toolchain
from strata.observability import StructuredLogger


def _oracle(output_root: Path, runner: InProcessToolRunner, logger: StructuredLogger | None = None) -> FingerprintOracle:
    return FingerprintOracle(
        runner=runner,
        toolchain=Toolchain(),
        output_root=output_root,
        variant="release",
        logger=logger or StructuredLogger(),
    )


def test_signature_command_compiles_an_empty_unit_with_verbose_assembly() -> None:
    command = signature_command(Toolchain(cxx="g++"), "c++", ("-O2",))
    assert command == ("g++", "-O2", "-S", "-fverbose-asm", "-o", "-", "-x", "c++", "/dev/null")


def test_signature_depends_on_flags_and_compiler_identity(
    tmp_path: Path,
    inprocess_runner: InProcessToolRunner,
) -> None:
    def signature(runner: InProcessToolRunner, flags: tuple[str, ...]) -> str:
        return compute_signature(
            runner=runner,
            toolchain=Toolchain(),
            language="c",
            flags=flags,
            cwd=tmp_path,
            env={},
        )

    baseline = signature(inprocess_runner, ("-O1",))
    assert signature(inprocess_runner, ("-O1",)) == baseline
    assert signature(inprocess_runner, ("-O2",)) != baseline
    upgraded = InProcessToolRunner(compiler_identity="inprocess-cc 2.0 (x86_64-linux-gnu)")
    assert signature(upgraded, ("-O1",)) != baseline


def test_sentinel_is_written_once_and_rewritten_only_when_flags_change(
    tmp_path: Path,
    inprocess_runner: InProcessToolRunner,
) -> None:
    oracle = _oracle(tmp_path, inprocess_runner)

    first = oracle.refresh({(".", "c"): ("-O1",), ("sub", "c++"): ("-O1",)})
    assert first.rewritten == [".cflags", "sub/.cxxflags"]
    payload = json.loads((tmp_path / "sub" / ".cxxflags").read_text(encoding="utf-8"))
    assert payload["flags"] == ["-O1"]
    assert payload["signature"] == first.fingerprints[("sub", "c++")].signature

    before = (tmp_path / ".cflags").stat().st_mtime_ns
    unchanged = oracle.refresh({(".", "c"): ("-O1",), ("sub", "c++"): ("-O1",)})
    assert unchanged.rewritten == []
    assert (tmp_path / ".cflags").stat().st_mtime_ns == before

    changed = oracle.refresh({(".", "c"): ("-O1",), ("sub", "c++"): ("-O1", "-DNEW")})
    assert changed.rewritten == ["sub/.cxxflags"]


def test_corrupt_sentinel_is_logged_and_replaced(
    tmp_path: Path,
    inprocess_runner: InProcessToolRunner,
) -> None:
    logger = StructuredLogger()
    (tmp_path / ".cflags").write_text("{not json", encoding="utf-8")
    oracle = _oracle(tmp_path, inprocess_runner, logger)

    assert oracle.read_sentinel(".", "c") is None
    refresh = oracle.refresh({(".", "c"): ()})
    assert refresh.rewritten == [".cflags"]
    assert logger.records_for_operation("sentinel_corrupt")


def test_compiler_failure_raises_fingerprint_error(
    tmp_path: Path,
    inprocess_runner: InProcessToolRunner,
) -> None:
    inprocess_runner.failing.add("-fbogus")
    oracle = _oracle(tmp_path, inprocess_runner)
    with pytest.raises(FingerprintError) as excinfo:
        oracle.refresh({(".", "c"): ("-fbogus",)})
    assert excinfo.value.context["returncode"] == "1"
    assert not (tmp_path / sentinel_path(".", "c")).exists()
