"""Tests for argument parsing and the CLI entry point."""

import json
from pathlib import Path

import pytest

from linkaudit.cli import _ensure_command_prefix, build_config, main, parse_args


def test_content_is_the_default_command():
    assert _ensure_command_prefix([], ["content", "site"]) == ("content",)
    assert _ensure_command_prefix(["--all"], ["content", "site"]) == ("content", "--all")
    assert _ensure_command_prefix(["site", "https://x.example"], ["content", "site"]) == [
        "site",
        "https://x.example",
    ]


def test_mode_flags():
    assert parse_args(["content"]).force_full_check is False
    assert parse_args(["--all"]).force_full_check is True
    assert parse_args(["content", "--failed"]).force_full_check is False
    with pytest.raises(SystemExit):
        parse_args(["content", "--all", "--failed"])


def test_build_config_for_site(tmp_path):
    args = parse_args(
        [
            "site",
            "http://localhost:4321/",
            "--repo-root",
            str(tmp_path),
            "--production-domain",
            "www.prod.example",
            "--site-domain",
            "prod.example",
            "--max-pages",
            "50",
            "--concurrency",
            "4",
        ]
    )
    config = build_config(args)

    assert config.repo_root == tmp_path.resolve()
    assert config.production_domains == ("www.prod.example",)
    assert config.site_domains == ("prod.example",)
    assert config.max_pages == 50
    assert config.concurrency == 4
    assert config.content_root == tmp_path.resolve() / "content"


def test_cache_path_from_environment(tmp_path, monkeypatch):
    override = tmp_path / "elsewhere.json"
    monkeypatch.setenv("LINKAUDIT_CACHE_PATH", str(override))
    config = build_config(parse_args(["content", "--repo-root", str(tmp_path)]))
    assert config.cache_path == override


def test_main_without_content_exits_nonzero(tmp_path):
    exit_code = main(["content", "--repo-root", str(tmp_path), "--summary-dir", str(tmp_path / "out")])

    assert exit_code == 1
    [summary_file] = (tmp_path / "out").glob("linkaudit-content-*.summary.json")
    assert json.loads(summary_file.read_text(encoding="utf-8"))["status"] == "fail"


def test_package_readme_is_the_project_readme():
    root = Path(__file__).resolve().parents[1]
    pyproject = (root / "pyproject.toml").read_text(encoding="utf-8")

    assert 'readme = "README.md"' in pyproject
    assert (root / "README.md").read_text(encoding="utf-8").startswith("# linkaudit")
