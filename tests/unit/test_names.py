"""Tests for project display names."""

import json

from cc_index.names import decode_project_name, get_project_display_name


def test_package_json_name_wins(temp_dir):
    (temp_dir / "package.json").write_text(json.dumps({"name": "@acme/web"}))
    (temp_dir / "pyproject.toml").write_text('[project]\nname = "ignored"\n')

    assert get_project_display_name(str(temp_dir)) == "@acme/web"


def test_pyproject_name(temp_dir):
    (temp_dir / "pyproject.toml").write_text('[project]\nname = "widget-tools"\n')

    assert get_project_display_name(str(temp_dir)) == "widget-tools"


def test_broken_manifests_fall_back_to_path(temp_dir):
    repo = temp_dir / "org" / "repo"
    repo.mkdir(parents=True)
    (repo / "package.json").write_text("{broken")
    (repo / "pyproject.toml").write_text("not = [toml")

    assert get_project_display_name(str(repo)) == "org/repo"


def test_path_segments():
    assert get_project_display_name("/nonexistent/org/repo") == "org/repo"
    assert get_project_display_name("/repo") == "repo"
    assert get_project_display_name(None) is None
    assert get_project_display_name("") is None


def test_decode_project_name():
    assert decode_project_name("-Users-me-repos-org-app") == "org/app"
    assert decode_project_name("-home-dev-src-tool") == "dev/tool"
    assert decode_project_name("-projects-app") == "app"
    assert decode_project_name("plain") == "plain"
