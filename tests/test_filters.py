"""Tests for watchmon_core.filters."""

from pathlib import Path

import pytest

from watchmon_core.filters import (
    PathFilter,
    anchor_glob,
    compile_glob,
    expand_alternations,
    extension_glob,
    normalize_path,
    resolve_targets,
    scan_glob,
)
from watchmon_core.models import WatchTarget


class TestScanGlob:
    """Tests for scan_glob base extraction."""

    @pytest.mark.parametrize(
        "pattern,expected",
        [
            ("src", ("src", False)),
            ("./src", ("src", False)),
            (".", (".", False)),
            ("src/**/*.py", ("src", True)),
            ("**/*.py", (".", True)),
            ("lib/(a|b)/*.js", ("lib", True)),
            ("/abs/dir/*.txt", ("/abs/dir", True)),
            ("/*.txt", ("/", True)),
        ],
    )
    def test_scan(self, pattern, expected):
        assert scan_glob(pattern) == expected


class TestCompileGlob:
    """Tests for the glob predicate engine."""

    def test_alternation_expansion(self):
        assert sorted(expand_alternations("*.(js|ts)")) == ["*.js", "*.ts"]
        assert sorted(expand_alternations("{a,b}/x.(c|d)")) == ["a/x.c", "a/x.d", "b/x.c", "b/x.d"]

    def test_globstar_matches_top_level(self):
        match = compile_glob("**/*.test.js")
        assert match("a.test.js")
        assert match("src/a.test.js")
        assert match("src/deep/a.test.js")
        assert not match("src/a.js")

    def test_trailing_globstar_matches_directory_contents(self):
        match = compile_glob("**/(.git|node_modules)/**")
        assert match(".git/HEAD")
        assert match("pkg/node_modules/x/index.js")
        assert match("node_modules")
        assert not match("src/app.py")

    def test_multiple_patterns(self):
        match = compile_glob(["*.py", "*.toml"])
        assert match("pyproject.toml")
        assert match("src/app.py")
        assert not match("README.md")

    def test_case_insensitive(self):
        assert not compile_glob("*.PY")("app.py")
        assert compile_glob("*.PY", case_sensitive=False)("app.py")

    def test_dot_false_skips_hidden_segments(self):
        match = compile_glob("**/*.py", dot=False)
        assert match("src/app.py")
        assert not match(".venv/lib/site.py")
        assert compile_glob(".venv/**", dot=False)(".venv/lib/site.py")

    def test_dot_false_literal_dot_in_pattern(self):
        """A pattern spelling out the leading dot still matches hidden names."""
        match = compile_glob("**/.e*", dot=False)
        assert match("a/.env")
        assert match(".env")
        assert compile_glob("src/.cache/*.py", dot=False)("src/.cache/x.py")

    def test_dot_false_wildcards_skip_hidden_segments(self):
        match = compile_glob("**/*", dot=False)
        assert match("a/b.env")
        assert not match("a/.env")
        assert not compile_glob("src/**/*.py", dot=False)("src/.cache/x.py")
        assert not compile_glob("src/?env", dot=False)("src/.env")

    def test_leading_dot_slash_is_ignored(self):
        assert compile_glob("./src/**")("src/a.js")
        assert compile_glob("src/**")("./src/a.js")


class TestPathFilter:
    """Tests for the combined PathFilter predicate."""

    def test_unconfigured_filter_watches_everything(self):
        path_filter = PathFilter()
        assert path_filter.is_watched("anything/at/all.bin")
        assert path_filter("x")

    @pytest.mark.parametrize("included", [True, False])
    @pytest.mark.parametrize("excluded", [True, False])
    @pytest.mark.parametrize("ext_ok", [True, False])
    def test_combination_rule(self, included, excluded, ext_ok):
        path_filter = PathFilter(
            include=lambda p: included,
            exclude=lambda p: excluded,
            extension_allow=lambda p: ext_ok,
        )
        expected = included and not excluded and ext_ok
        assert path_filter.is_watched("p") is expected
        # Pure: repeated calls give the same answer
        assert path_filter.is_watched("p") is expected

    def test_from_options_scenario(self):
        path_filter = PathFilter.from_options(roots=["./src"], ignore="**/*.test.js")
        assert path_filter.is_watched("src/a.js")
        assert path_filter.is_watched("src/b.js")
        assert not path_filter.is_watched("src/a.test.js")

    def test_plain_roots_do_not_narrow(self):
        assert PathFilter.from_options(roots=["src"]).include is None

    def test_glob_roots_build_include(self):
        path_filter = PathFilter.from_options(roots=["src/**/*.py", "conf"])
        assert path_filter.is_watched("src/pkg/app.py")
        assert path_filter.is_watched("conf/settings.ini")
        assert not path_filter.is_watched("src/readme.md")

    def test_extensions(self):
        path_filter = PathFilter.from_options(extensions=[".py", "toml"])
        assert path_filter.is_watched("a/b.py")
        assert path_filter.is_watched("pyproject.toml")
        assert not path_filter.is_watched("notes.txt")
        assert extension_glob([".py", "toml"]) == "**/*.(py|toml)"

    def test_explicit_predicates_win(self):
        path_filter = PathFilter.from_options(
            roots=["src/*.js"],
            ignore="**/*.js",
            include=lambda p: True,
            exclude=lambda p: p.endswith(".tmp"),
        )
        assert path_filter.is_watched("anything.js")
        assert not path_filter.is_watched("x.tmp")


def test_normalize_path():
    assert normalize_path("./a/b") == "a/b"
    assert normalize_path(Path("a") / "b") == "a/b"
    assert normalize_path(".") == ""


def test_resolve_targets(tmp_path):
    targets = resolve_targets(["src", "src/**/*.py", "lib/*.js"], tmp_path)
    assert targets == {
        WatchTarget((tmp_path / "src").resolve()),
        WatchTarget((tmp_path / "lib").resolve()),
    }


def test_watch_target_requires_absolute_path():
    with pytest.raises(ValueError):
        WatchTarget(Path("relative"))


class TestAnchorGlob:
    """Tests for rewriting root and ignore patterns into display-path form."""

    @pytest.mark.parametrize(
        "pattern,expected",
        [
            ("src/**/*.py", "src/**/*.py"),
            ("./src/*.js", "src/*.js"),
            ("src", "src/**"),
            (".", "**"),
            ("**/*.test.js", "**/*.test.js"),
        ],
    )
    def test_without_cwd(self, pattern, expected):
        assert anchor_glob(pattern) == expected

    def test_absolute_root_below_cwd_becomes_relative(self, tmp_path):
        cwd = tmp_path.resolve()
        assert anchor_glob(f"{cwd}/src/**/*.js", cwd) == "src/**/*.js"
        assert anchor_glob(str(cwd / "src"), cwd) == "src/**"

    def test_root_outside_cwd_becomes_absolute(self, tmp_path):
        cwd = (tmp_path / "app").resolve()
        expected = (tmp_path / "lib").resolve().as_posix()
        assert anchor_glob("../lib/*.js", cwd) == f"{expected}/*.js"

    def test_absolute_glob_root_filter(self, tmp_path):
        cwd = tmp_path.resolve()
        path_filter = PathFilter.from_options(roots=[f"{cwd}/src/**/*.js"], cwd=cwd)
        assert path_filter.is_watched("src/a.js")
        assert path_filter.is_watched("src/deep/b.js")
        assert not path_filter.is_watched("src/a.py")
        assert not path_filter.is_watched("lib/a.js")

    def test_parent_glob_root_filter(self, tmp_path):
        cwd = (tmp_path / "app").resolve()
        lib = (tmp_path / "lib").resolve()
        path_filter = PathFilter.from_options(roots=["../lib/*.js"], cwd=cwd)
        assert path_filter.is_watched((lib / "a.js").as_posix())
        assert not path_filter.is_watched("lib/a.js")

    def test_absolute_ignore_below_cwd(self, tmp_path):
        cwd = tmp_path.resolve()
        path_filter = PathFilter.from_options(ignore=f"{cwd}/build/**", cwd=cwd)
        assert not path_filter.is_watched("build/out.js")
        assert path_filter.is_watched("src/app.js")
