"""Tests for active project discovery."""

import os
from datetime import datetime, timedelta
from pathlib import Path

from discovery_signals.devenv.models import DevProject
from discovery_signals.devenv.projects import (
    collect_dev_projects,
    format_dev_projects_for_synthesis,
    git_repo_activity,
    project_roots,
)

NOW = datetime(2026, 10, 1, 12, 0)


def _repo(path, days_ago):
    git = path / ".git"
    git.mkdir(parents=True)
    stamp = (NOW - timedelta(days=days_ago)).timestamp()
    (git / "HEAD").write_text("ref: refs/heads/main\n")
    os.utime(git / "HEAD", (stamp, stamp))
    return path


def test_project_roots():
    roots = project_roots(home=Path("/home/ada"), platform="darwin")
    names = [r.name for r in roots]
    assert "projects" in names
    assert "Developer" in names
    assert names[-1] == "Documents"


def test_git_repo_activity(tmp_path):
    repo = _repo(tmp_path / "parser", days_ago=2)
    assert git_repo_activity(repo) == (NOW - timedelta(days=2)).timestamp()
    assert git_repo_activity(tmp_path) is None


def test_collect_dev_projects(tmp_path):
    _repo(tmp_path / "projects" / "parser", days_ago=1)
    _repo(tmp_path / "code" / "client" / "web", days_ago=5)
    _repo(tmp_path / "projects" / "stale", days_ago=90)
    _repo(tmp_path / "projects" / "node_modules" / "dep", days_ago=0)
    _repo(tmp_path / "projects" / "parser" / "vendored", days_ago=0)

    projects = collect_dev_projects(home=tmp_path, platform="linux", now=NOW)
    assert [p.name for p in projects] == ["parser", "web"]
    assert projects[0].path == str(tmp_path / "projects" / "parser")


def test_collect_dev_projects_respects_depth(tmp_path):
    _repo(tmp_path / "projects" / "a" / "b" / "c" / "d" / "e" / "deep", days_ago=1)
    assert collect_dev_projects(home=tmp_path, platform="linux", now=NOW) == []


def test_format():
    projects = [
        DevProject("parser", "/p/parser", NOW - timedelta(hours=3)),
        DevProject("web", "/p/web", NOW - timedelta(days=1, hours=2)),
        DevProject("old", "/p/old", NOW - timedelta(days=12)),
    ]
    assert format_dev_projects_for_synthesis(projects, now=NOW) == "\n".join([
        "## Active Projects",
        "",
        "- parser (/p/parser) (today)",
        "- web (/p/web) (yesterday)",
        "- old (/p/old) (12d ago)",
    ])


def test_format_empty():
    assert format_dev_projects_for_synthesis([]) == ""
