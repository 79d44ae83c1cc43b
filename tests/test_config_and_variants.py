from pathlib import Path

import pytest

from strata.backends import InProcessToolRunner
from strata.config import ProjectConfig, load_config
from strata.engine import dispatch
from strata.errors import ConfigError
from strata.variants import default_variant_name, make_variant, select_variant


def test_defaults_apply_without_a_config_file(source_root: Path) -> None:
    config = load_config(source_root=source_root, env={})
    assert config.path is None
    assert config.toolchain.cc == "cc"
    assert sorted(config.variants) == ["coverage", "debug", "release"]
    assert config.variant_profile("release").flags.cflags == ("-g", "-O1")
    assert config.variant_profile("coverage").env == {"CCACHE_DISABLE": "true"}


def test_yaml_config_sets_tools_flags_and_extra_variants(source_root: Path) -> None:
    (source_root / "strata.yaml").write_text(
        "tools:\n"
        "  cc: gcc\n"
        "  cxx: g++\n"
        "tool_path: /opt/toolchain/bin\n"
        "flags:\n"
        "  cflags: -Wall -Wextra\n"
        "  ldlibs: [-lm]\n"
        "variants:\n"
        "  asan:\n"
        "    cflags: [-g, -fsanitize=address]\n"
        "    ldflags: [-fsanitize=address]\n"
        "    env:\n"
        "      ASAN_OPTIONS: detect_leaks=0\n",
        encoding="utf-8",
    )
    config = load_config(source_root=source_root, env={})

    assert config.path == source_root / "strata.yaml"
    assert config.toolchain.cc == "/opt/toolchain/bin/gcc"
    assert config.toolchain.cxx == "/opt/toolchain/bin/g++"
    assert config.toolchain.ar == "/opt/toolchain/bin/ar"
    assert config.flags.cflags == ("-Wall", "-Wextra")
    assert "asan" in config.variants and "release" in config.variants

    variant = make_variant("asan", config=config, source_root=source_root)
    assert variant.flags.cflags == ("-g", "-fsanitize=address", "-Wall", "-Wextra")
    assert variant.flags.ldlibs == ("-lm",)
    assert variant.env == {"ASAN_OPTIONS": "detect_leaks=0"}
    assert variant.output_root == source_root / "build" / "asan"


def test_tool_path_environment_overrides_config(source_root: Path) -> None:
    (source_root / "strata.yaml").write_text("tool_path: /from/config\n", encoding="utf-8")
    config = load_config(source_root=source_root, env={"STRATA_TOOLS": "/from/env"})
    assert config.toolchain.cc == "/from/env/cc"


def test_config_path_may_come_from_environment(tmp_path: Path, source_root: Path) -> None:
    alternate = tmp_path / "alt.yaml"
    alternate.write_text("tools: {protoc: protoc3}\n", encoding="utf-8")
    config = load_config(source_root=source_root, env={"STRATA_CONFIG": str(alternate)})
    assert config.toolchain.protoc == "protoc3"
    assert config.path == alternate


@pytest.mark.parametrize(
    ("content", "fragment"),
    [
        ("tools: [gcc]\n", "tools"),
        ("tools: {fortran: gfortran}\n", "tool names"),
        ("variants: {clean: {}}\n", "variant name"),
        ("flags: {cflags: 3}\n", "flags.cflags"),
        ("- just\n- a list\n", "mapping"),
        ("flags: {cflags: [\n", "YAML"),
    ],
)
def test_invalid_config_is_rejected(source_root: Path, content: str, fragment: str) -> None:
    (source_root / "strata.yaml").write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(source_root=source_root, env={})
    assert fragment in str(excinfo.value)


def test_explicit_missing_config_is_an_error(source_root: Path) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_config(source_root / "missing.yaml", source_root=source_root, env={})
    assert excinfo.value.hint is not None


def test_default_variant_follows_environment() -> None:
    config = ProjectConfig()
    assert default_variant_name({}, config) == "release"
    assert default_variant_name({"DEBUG": "1"}, config) == "debug"
    assert default_variant_name({"BUILD_TYPE": "coverage", "DEBUG": "1"}, config) == "coverage"
    with pytest.raises(ConfigError):
        default_variant_name({"BUILD_TYPE": "profile"}, config)


def test_variant_goals_build_everything_and_other_goals_are_forwarded(source_root: Path) -> None:
    config = ProjectConfig()
    variant, goal = select_variant("debug", env={}, config=config, source_root=source_root)
    assert (variant.name, goal) == ("debug", "all")

    variant, goal = select_variant("sub/app", env={"DEBUG": "y"}, config=config, source_root=source_root)
    assert (variant.name, goal) == ("debug", "sub/app")

    variant, goal = select_variant(None, env={}, config=config, source_root=source_root)
    assert (variant.name, goal) == ("release", "all")
    assert variant.output_root == source_root / "build" / "release"


def test_dispatch_selects_variant_and_clean_removes_every_tree(
    source_root: Path,
    inprocess_runner: InProcessToolRunner,
) -> None:
    (source_root / "app.c").write_text("int main(void) { return 0; }\n", encoding="utf-8")
    (source_root / "Rules.py").write_text('rules.sources("app.c")\nrules.targets("app")\n', encoding="utf-8")

    coverage = dispatch(None, source_root=source_root, env={"BUILD_TYPE": "coverage"}, runner=inprocess_runner)
    debug = dispatch("debug", source_root=source_root, env={}, runner=inprocess_runner)
    assert coverage is not None and coverage.variant == "coverage"
    assert debug is not None and debug.executed[-1] == "app"
    compile_call = next(call for call in inprocess_runner.calls if "-c" in call)
    assert "--coverage" in compile_call
    assert (source_root / "build" / "coverage" / "app").exists()
    assert (source_root / "build" / "debug" / "app").exists()

    assert dispatch("clean", source_root=source_root, env={}) is None
    assert not (source_root / "build").exists()
    assert (source_root / "app.c").exists()
