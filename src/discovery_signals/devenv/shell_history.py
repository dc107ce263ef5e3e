"""Tool usage and working directories mined from shell history files.

Lines that look like they carry credentials are dropped before any counting.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from pathlib import Path

from discovery_signals.devenv.models import CommandFrequency, ShellAnalysis
from discovery_signals.probe import current_platform

logger = logging.getLogger(__name__)

TOP_COMMANDS = 30
TOP_PATHS = 20

SENSITIVE_PATTERNS = [
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"auth", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
    re.compile(r"-p\s+\S+", re.IGNORECASE),
    re.compile(r"export\s+\w*(KEY|TOKEN|SECRET|PASSWORD)", re.IGNORECASE),
    re.compile(r"curl.*-H.*Authorization", re.IGNORECASE),
    re.compile(r"curl.*-u\s", re.IGNORECASE),
]

DEV_TOOLS = frozenset({
    "git", "npm", "npx", "yarn", "pnpm", "bun", "bunx", "node", "deno",
    "python", "python3", "pip", "pip3", "cargo", "rustc", "go",
    "docker", "docker-compose", "kubectl", "terraform", "aws", "gcloud", "az",
    "code", "cursor", "vim", "nvim", "nano", "make", "cmake", "gradle", "mvn",
    "dotnet", "ruby", "gem", "bundle", "php", "composer", "java", "javac",
    "scala", "sbt", "swift", "xcodebuild", "flutter", "dart", "zig",
})

_COMMAND_PREFIX = re.compile(r"^(?:(?:sudo|time|nohup|nice)\s+|env\s+\S+=\S+\s+)+", re.IGNORECASE)
_BASE_COMMAND = re.compile(r"^([a-zA-Z0-9_.-]+)")
_CD = re.compile(r"^\s*cd\s+(.+)$")
_CD_TARGET = re.compile(r"""^(?:"([^"]+)"|'([^']+)'|([^\s&|;><]+))""")
_URL_ENCODED = re.compile(r"%[0-9A-Fa-f]{2}")
_MALFORMED_DRIVE = re.compile(r"^/[a-zA-Z]:")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")


def history_paths(
    home: Path | None = None,
    platform: str | None = None,
    env: dict[str, str] | None = None,
) -> list[Path]:
    home = home or Path.home()
    platform = platform or current_platform()
    if platform == "win32":
        app_data = Path((env or {}).get("APPDATA") or home / "AppData" / "Roaming")
        return [
            app_data / "Microsoft" / "Windows" / "PowerShell" / "PSReadLine" / "ConsoleHost_history.txt",
            home / ".bash_history",
        ]
    return [home / ".zsh_history", home / ".bash_history"]


def parse_history_line(line: str) -> str:
    """Strip the zsh extended-history prefix (``: <ts>:<dur>;``)."""
    if line.startswith(": "):
        idx = line.find(";")
        if idx != -1:
            return line[idx + 1:].strip()
    return line.strip()


def is_sensitive_command(line: str) -> bool:
    return any(p.search(line) for p in SENSITIVE_PATTERNS)


def extract_base_command(line: str) -> str | None:
    if not line or line.startswith("#"):
        return None
    cmd = _COMMAND_PREFIX.sub("", line.strip()).strip()
    m = _BASE_COMMAND.match(cmd)
    return m.group(1).lower() if m else None


def _is_valid_path(path: str) -> bool:
    return not (
        _URL_ENCODED.search(path)
        or _MALFORMED_DRIVE.match(path)
        or _CONTROL_CHARS.search(path)
    )


def extract_cd_path(line: str, home: Path | None = None) -> str | None:
    """Target of a ``cd`` command, ignoring chains, redirections and quotes."""
    m = _CD.match(line)
    if not m:
        return None

    target = m.group(1).strip()
    chain = _CD_TARGET.match(target)
    if chain:
        target = chain.group(1) or chain.group(2) or chain.group(3) or ""
    target = target.strip().strip("\"'")

    if target in ("", "-", ".", ".."):
        return None
    if not _is_valid_path(target):
        return None
    if target.startswith("~"):
        target = str(home or Path.home()) + target[1:]
    if len(target) < 3:
        return None
    if len(target) < 5 and not Path(target).is_absolute():
        return None
    return target


def analyze_history_lines(lines, home: Path | None = None) -> ShellAnalysis:
    """Count base commands, dev tools and ``cd`` targets across ``lines``."""
    commands: Counter[str] = Counter()
    paths: Counter[str] = Counter()
    tools: set[str] = set()

    for raw in lines:
        line = parse_history_line(raw)
        if not line or is_sensitive_command(line):
            continue

        base = extract_base_command(line)
        if base:
            commands[base] += 1
            if base in DEV_TOOLS:
                tools.add(base)

        cd_path = extract_cd_path(line, home)
        if cd_path:
            paths[cd_path] += 1

    return ShellAnalysis(
        top_commands=[CommandFrequency(c, n) for c, n in commands.most_common(TOP_COMMANDS)],
        project_paths=[p for p, _ in paths.most_common(TOP_PATHS)],
        tools_used=sorted(tools),
    )


def analyze_shell_history(
    home: Path | None = None,
    platform: str | None = None,
    env: dict[str, str] | None = None,
) -> ShellAnalysis:
    home = home or Path.home()
    lines: list[str] = []
    for path in history_paths(home, platform, env):
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        file_lines = content.split("\n")
        logger.debug("Parsing %s: %d lines", path, len(file_lines))
        lines.extend(file_lines)

    analysis = analyze_history_lines(lines, home)
    logger.info(
        "Shell history analyzed: %d commands, %d paths, %d tools",
        len(analysis.top_commands), len(analysis.project_paths), len(analysis.tools_used),
    )
    return analysis


def format_shell_analysis_for_synthesis(data: ShellAnalysis | None) -> str:
    if not data:
        return ""

    lines = ["## Shell History"]

    if data.tools_used:
        lines.append("\n### Dev Tools Used")
        lines.append(", ".join(data.tools_used))

    dev_commands = [c for c in data.top_commands if c.command in DEV_TOOLS][:15]
    if dev_commands:
        lines.append("\n### Command Frequency")
        lines.append(", ".join(f"{c.command} ({c.count})" for c in dev_commands))

    if data.project_paths:
        lines.append("\n### Working Directories")
        lines.extend(data.project_paths[:10])

    return "\n".join(lines)
