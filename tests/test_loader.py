from collections.abc import Callable
from pathlib import Path

import pytest

from strata.errors import RulesError, ValidationError
from strata.loader import RuleLoader, load_rules
from strata.observability import StructuredLogger


def test_discovery_skips_output_tree_and_hidden_directories(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree(
        {
            "Rules.py": "",
            "sub/Rules.py": "",
            "sub/build/Rules.py": "",
            "build/release/Rules.py": "",
            ".git/Rules.py": "",
        }
    )
    assert RuleLoader(source_root).discover() == [".", "sub", "sub/build"]


def test_nested_paths_are_rewritten_relative_to_the_root(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree(
        {
            "Rules.py": 'rules.sources("main.c")\nrules.targets("app")\nrules.depends("app", ["main.o", "lib/libutil.a"])\n',
            "lib/Rules.py": 'rules.sources("util.c", "deep/more.c")\nrules.targets("libutil.a")\nrules.depends("libutil.a", ["util.o", "deep/more.o"])\n',
        }
    )
    description = load_rules(source_root)

    assert [item.path for item in description.sources] == ["main.c", "lib/util.c", "lib/deep/more.c"]
    assert [item.origin for item in description.sources] == [".", "lib", "lib"]
    assert [item.path for item in description.targets] == ["app", "lib/libutil.a"]
    assert description.depends == {
        "app": ("main.o", "lib/libutil.a"),
        "lib/libutil.a": ("lib/util.o", "lib/deep/more.o"),
    }
    assert description.rules_files == ("Rules.py", "lib/Rules.py")


def test_innermost_description_is_merged_through_its_ancestors(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree(
        {
            "a/Rules.py": 'rules.sources("x.c")\n',
            "a/b/c/Rules.py": 'rules.sources("y.c")\nrules.flags("c", "-DDEEP")\n',
        }
    )
    description = load_rules(source_root)

    assert [item.path for item in description.sources] == ["a/x.c", "a/b/c/y.c"]
    assert description.flags == {"a/b/c": {"c": ("-DDEEP",)}}


def test_flags_are_keyed_by_declaring_directory_and_never_inherited(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree(
        {
            "Rules.py": 'rules.flags("c", "-DROOT")\nrules.flags("c", "-Wall")\n',
            "one/Rules.py": 'rules.flags("c++", "-DONE")\nrules.flags("ldlibs", "-lm")\n',
            "two/Rules.py": "",
        }
    )
    description = load_rules(source_root)

    assert description.flags == {
        ".": {"c": ("-DROOT", "-Wall")},
        "one": {"c++": ("-DONE",), "ldlibs": ("-lm",)},
    }


def test_sibling_scopes_are_isolated(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree(
        {
            "one/Rules.py": 'rules.sources("a.c")\nassert rules.directory == "one"\n',
            "two/Rules.py": 'rules.sources("a.c")\nassert rules.directory == "two"\n',
        }
    )
    description = load_rules(source_root)
    assert [item.path for item in description.sources] == ["one/a.c", "two/a.c"]


def test_failing_description_raises_rules_error(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree({"sub/Rules.py": "rules.sources(undefined_name)\n"})
    with pytest.raises(RulesError) as excinfo:
        load_rules(source_root)
    assert excinfo.value.context["path"] == "sub/Rules.py"
    assert excinfo.value.hint is not None and "NameError" in excinfo.value.hint


def test_unknown_flag_language_is_rejected(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree({"Rules.py": 'rules.flags("fortran", "-O2")\n'})
    with pytest.raises(ValidationError) as excinfo:
        load_rules(source_root)
    assert "fortran" in str(excinfo.value)


def test_absolute_declared_paths_are_rejected(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree({"Rules.py": 'rules.sources("/tmp/a.c")\n'})
    with pytest.raises(ValidationError):
        load_rules(source_root)


def test_absolute_prerequisites_are_kept_verbatim(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree({"sub/Rules.py": 'rules.targets("app")\nrules.depends("app", "/usr/lib/libfoo.a")\n'})
    description = load_rules(source_root)
    assert description.depends == {"sub/app": ("/usr/lib/libfoo.a",)}


def test_each_evaluated_description_is_announced(
    source_root: Path,
    write_tree: Callable[[dict[str, str]], None],
) -> None:
    write_tree({"Rules.py": "", "sub/Rules.py": ""})
    logger = StructuredLogger()
    load_rules(source_root, logger=logger)
    messages = [record["message"] for record in logger.records_for_operation("announce")]
    assert messages == ["  MK  Rules.py", "  MK  sub/Rules.py"]


def test_tree_without_descriptions_is_empty(source_root: Path) -> None:
    description = load_rules(source_root)
    assert description.sources == ()
    assert description.targets == ()
    assert description.flags == {}
