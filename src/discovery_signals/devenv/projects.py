"""Find recently active git repositories under common project roots."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from pathlib import Path

from discovery_signals.devenv.models import DevProject
from discovery_signals.probe import current_platform

logger = logging.getLogger(__name__)

RECENCY_DAYS = 30
MAX_DEPTH = 4
MAX_PROJECTS = 30

SKIP_DIRS = frozenset({
    "node_modules", ".git", "vendor", "target", "build", "dist", ".cache",
    ".npm", ".pnpm", ".yarn", "__pycache__", ".venv", "venv", "env",
    ".cargo", ".rustup", "go", ".local", ".config", "Library", "AppData",
    "Application Data", "Applications", "Program Files", "Program Files (x86)",
    "Windows",
})

# Files under .git touched by common operations (commit, checkout, fetch, reflog).
GIT_ACTIVITY_FILES = ("index", "HEAD", "FETCH_HEAD", "logs/HEAD")


def project_roots(home: Path | None = None, platform: str | None = None) -> list[Path]:
    home = home or Path.home()
    platform = platform or current_platform()
    roots = [
        home / name
        for name in ("projects", "repos", "code", "dev", "src", "work", "workspace", "git", "GitHub")
    ]
    if platform == "darwin":
        roots.append(home / "Developer")
    if platform == "win32":
        roots.extend(Path(p) for p in ("C:\\dev", "C:\\projects", "C:\\repos"))
    roots.append(home / "Documents")
    return roots


def git_repo_activity(directory: Path) -> float | None:
    """Latest mtime among the repo's activity files, else the ``.git`` dir's."""
    git_dir = directory / ".git"
    try:
        git_stat = git_dir.stat()
    except OSError:
        return None
    if not git_dir.is_dir():
        return None

    latest = 0.0
    for rel in GIT_ACTIVITY_FILES:
        try:
            latest = max(latest, (git_dir / rel).stat().st_mtime)
        except OSError:
            continue
    return latest if latest > 0 else git_stat.st_mtime


def scan_for_git_repos(directory: Path, depth: int, cutoff: float, results: list[DevProject]) -> None:
    """Depth-first search; git repos are leaves (submodules are not followed)."""
    if depth > MAX_DEPTH:
        return
    try:
        entries = [e for e in os.scandir(directory) if e.is_dir(follow_symlinks=False)]
    except OSError:
        return

    if any(e.name == ".git" for e in entries):
        activity = git_repo_activity(directory)
        if activity and activity >= cutoff:
            results.append(DevProject(
                name=directory.name,
                path=str(directory),
                last_activity=datetime.fromtimestamp(activity),
            ))
        return

    for entry in sorted(entries, key=lambda e: e.name):
        if entry.name.startswith(".") or entry.name in SKIP_DIRS:
            continue
        scan_for_git_repos(Path(entry.path), depth + 1, cutoff, results)


def collect_dev_projects(
    home: Path | None = None,
    platform: str | None = None,
    now: datetime | None = None,
) -> list[DevProject]:
    """Git repos active in the last ``RECENCY_DAYS`` days, most recent first."""
    now = now or datetime.now()
    cutoff = (now - timedelta(days=RECENCY_DAYS)).timestamp()

    roots = [r for r in project_roots(home, platform) if r.is_dir()]
    logger.debug("Scanning %d project roots: %s", len(roots), roots)

    results: list[DevProject] = []
    for root in roots:
        scan_for_git_repos(root, 0, cutoff, results)

    seen: set[str] = set()
    unique = []
    for project in results:
        key = project.path.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(project)

    unique.sort(key=lambda p: p.last_activity, reverse=True)
    projects = unique[:MAX_PROJECTS]
    logger.info("Found %d active projects (last %d days)", len(projects), RECENCY_DAYS)
    return projects


def _recency(last_activity: datetime, now: datetime) -> str:
    days = (now - last_activity).days
    if days <= 0:
        return "today"
    if days == 1:
        return "yesterday"
    return f"{days}d ago"


def format_dev_projects_for_synthesis(projects: list[DevProject] | None, now: datetime | None = None) -> str:
    if not projects:
        return ""
    now = now or datetime.now()
    lines = [f"- {p.name} ({p.path}) ({_recency(p.last_activity, now)})" for p in projects[:15]]
    return "## Active Projects\n\n" + "\n".join(lines)
