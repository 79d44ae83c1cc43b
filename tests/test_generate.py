from pathlib import Path

import pytest

from strata.backends import InProcessToolRunner
from strata.errors import ToolExecutionError
from strata.generate import (
    ANNOTATION_FOOTER,
    ANNOTATION_HEADER,
    annotate_generated,
    generate_sources,
    generated_outputs,
    protoc_command,
)
from strata.models import Toolchain


def test_generated_outputs_share_the_schema_stem() -> None:
    assert generated_outputs("proto/msg.proto") == ("proto/msg.pb.cc", "proto/msg.pb.h")


def test_protoc_command_searches_the_schema_directory(tmp_path: Path) -> None:
    schema = tmp_path / "proto" / "msg.proto"
    command = protoc_command(Toolchain(protoc="/opt/bin/protoc"), schema, tmp_path / "out")
    assert command == (
        "/opt/bin/protoc",
        f"-I{tmp_path / 'proto'}",
        f"--cpp_out={tmp_path / 'out'}",
        str(schema),
    )


def test_annotation_wraps_the_whole_file(tmp_path: Path) -> None:
    path = tmp_path / "msg.pb.h"
    path.write_text("#pragma once\nint x;", encoding="utf-8")
    annotate_generated(path)
    lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
    assert lines[0] == ANNOTATION_HEADER
    assert lines[-1] == ANNOTATION_FOOTER
    assert lines[1:-1] == ["#pragma once\n", "int x;\n"]


def test_generate_sources_moves_annotated_outputs_into_place(
    tmp_path: Path,
    inprocess_runner: InProcessToolRunner,
) -> None:
    schema = tmp_path / "src" / "msg.proto"
    schema.parent.mkdir()
    schema.write_text("syntax = 'proto3';\n", encoding="utf-8")
    output_dir = tmp_path / "out"
    output_dir.mkdir()

    command, outputs = generate_sources(
        runner=inprocess_runner,
        toolchain=Toolchain(),
        schema=schema,
        output_dir=output_dir,
        cwd=output_dir,
        env={},
    )

    assert command[0] == "protoc"
    assert outputs == (output_dir / "msg.pb.cc", output_dir / "msg.pb.h")
    for path in outputs:
        assert path.read_text(encoding="utf-8").startswith(ANNOTATION_HEADER)
    assert sorted(path.name for path in output_dir.iterdir()) == ["msg.pb.cc", "msg.pb.h"]


def test_generator_failure_leaves_no_outputs(
    tmp_path: Path,
    inprocess_runner: InProcessToolRunner,
) -> None:
    schema = tmp_path / "msg.proto"
    schema.write_text("", encoding="utf-8")
    output_dir = tmp_path / "out"
    output_dir.mkdir()
    inprocess_runner.failing.add("--cpp_out=")

    with pytest.raises(ToolExecutionError) as excinfo:
        generate_sources(
            runner=inprocess_runner,
            toolchain=Toolchain(),
            schema=schema,
            output_dir=output_dir,
            cwd=output_dir,
            env={},
        )
    assert excinfo.value.context["schema"] == str(schema)
    assert list(output_dir.iterdir()) == []
