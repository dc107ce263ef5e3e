"""Find the Chromium-family browser profile that holds the user's live history.

Detection strategies, tried in order until one yields an existing store:

1. ``running``  - browsers with an active process (priority ordered)
2. ``default``  - the OS default browser (registry, LaunchServices, xdg)
3. ``recent``   - the browser whose history file was modified last
4. ``scan``     - a static table of install locations, channels and profiles

The order is a policy choice and can be changed through
``DiscoveryConfig.detection_order``.
"""

from __future__ import annotations

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path

from discovery_signals.browser.models import BrowserTarget
from discovery_signals.config import DETECTION_STRATEGIES
from discovery_signals.exceptions import ProbeError
from discovery_signals.probe import ProcessProbe, current_platform

logger = logging.getLogger(__name__)

# Priority order for running-process detection and exhaustive scans.
BROWSER_PRIORITY = ("chrome", "arc", "edge", "brave", "opera", "vivaldi")

# Profiles considered when resolving the most recently used one.
PROFILE_CANDIDATES = ("Default", "Profile 1", "Profile 2", "Profile 3", "Profile 4", "Profile 5")

# Profiles expanded into the static scan table.
PROFILE_VARIANTS = ("Default", "Profile 1", "Profile 2", "Profile 3")

BROWSER_PROCESSES: dict[str, dict[str, list[str]]] = {
    "chrome": {
        "win32": ["chrome.exe"],
        "darwin": ["Google Chrome"],
        "linux": ["chrome", "google-chrome", "chromium"],
    },
    "arc": {
        "win32": ["Arc.exe"],
        "darwin": ["Arc"],
        "linux": [],
    },
    "edge": {
        "win32": ["msedge.exe"],
        "darwin": ["Microsoft Edge"],
        "linux": ["msedge", "microsoft-edge"],
    },
    "brave": {
        "win32": ["brave.exe"],
        "darwin": ["Brave Browser"],
        "linux": ["brave", "brave-browser"],
    },
    "opera": {
        "win32": ["opera.exe"],
        "darwin": ["Opera"],
        "linux": ["opera"],
    },
    "vivaldi": {
        "win32": ["vivaldi.exe"],
        "darwin": ["Vivaldi"],
        "linux": ["vivaldi"],
    },
}

# (substring, browser kind) pairs matched against lowercased default-browser
# output; first match wins. ``None`` marks browsers whose history is not a
# Chromium-schema store.
DEFAULT_BROWSER_PATTERNS: dict[str, list[tuple[str, str | None]]] = {
    "win32": [
        ("firefox", None),
        ("chromehtm", "chrome"),
        ("msedge", "edge"),
        ("edgehtm", "edge"),
        ("bravehtm", "brave"),
        ("archtm", "arc"),
        ("operahtm", "opera"),
        ("operagx", "opera"),
        ("vivaldi", "vivaldi"),
    ],
    "darwin": [
        ("com.apple.safari", None),
        ("safari", None),
        ("firefox", None),
        ("chrome", "chrome"),
        ("edge", "edge"),
        ("brave", "brave"),
        ("thebrowser", "arc"),
        ("opera", "opera"),
        ("vivaldi", "vivaldi"),
    ],
    "linux": [
        ("firefox", None),
        ("chrom", "chrome"),
        ("edge", "edge"),
        ("brave", "brave"),
        ("opera", "opera"),
        ("vivaldi", "vivaldi"),
    ],
}

# Per-browser user-data directories, relative to the platform base path.
BROWSER_BASE_DIRS: dict[str, dict[str, str]] = {
    "chrome": {
        "win32": "Google/Chrome/User Data",
        "win32_alt": "Google/Chrome/User",
        "darwin": "Google/Chrome",
        "linux": ".config/google-chrome",
    },
    "arc": {
        "win32": "Arc/User Data",
        "darwin": "Arc/User Data",
    },
    "edge": {
        "win32": "Microsoft/Edge/User Data",
        "win32_alt": "Microsoft/Edge/User",
        "darwin": "Microsoft Edge",
        "linux": ".config/microsoft-edge",
    },
    "brave": {
        "win32": "BraveSoftware/Brave-Browser/User Data",
        "win32_alt": "BraveSoftware/Brave-Browser/User",
        "darwin": "BraveSoftware/Brave-Browser",
        "linux": ".config/BraveSoftware/Brave-Browser",
    },
    "opera": {
        "win32": "Opera Software/Opera Stable",
        "darwin": "com.operasoftware.Opera",
        "linux": ".config/opera",
    },
    "vivaldi": {
        "win32": "Vivaldi/User Data",
        "darwin": "Vivaldi",
        "linux": ".config/vivaldi",
    },
}


def _profile_paths(template: str) -> list[str]:
    return [template.replace("/Default/", f"/{profile}/") for profile in PROFILE_VARIANTS]


# Exhaustive scan table: alternate install locations and release channels.
BROWSER_HISTORY_PATHS: dict[str, dict[str, list[str]]] = {
    "chrome": {
        "win32": [
            *_profile_paths("Google/Chrome/User Data/Default/History"),
            *_profile_paths("Google/Chrome/User/Default/History"),
            *_profile_paths("Google/Chrome Beta/User Data/Default/History"),
            *_profile_paths("Google/Chrome SxS/User Data/Default/History"),
        ],
        "darwin": [
            *_profile_paths("Google/Chrome/Default/History"),
            *_profile_paths("Google/Chrome Beta/Default/History"),
            *_profile_paths("Google/Chrome Canary/Default/History"),
        ],
        "linux": [
            *_profile_paths(".config/google-chrome/Default/History"),
            *_profile_paths(".config/google-chrome-beta/Default/History"),
            *_profile_paths(".config/chromium/Default/History"),
        ],
    },
    "arc": {
        "win32": _profile_paths("Arc/User Data/Default/History"),
        "darwin": _profile_paths("Arc/User Data/Default/History"),
        "linux": [],
    },
    "edge": {
        "win32": [
            *_profile_paths("Microsoft/Edge/User Data/Default/History"),
            *_profile_paths("Microsoft/Edge/User/Default/History"),
            *_profile_paths("Microsoft/Edge Beta/User Data/Default/History"),
            *_profile_paths("Microsoft/Edge Dev/User Data/Default/History"),
        ],
        "darwin": [
            *_profile_paths("Microsoft Edge/Default/History"),
            *_profile_paths("Microsoft Edge Beta/Default/History"),
        ],
        "linux": [
            *_profile_paths(".config/microsoft-edge/Default/History"),
            *_profile_paths(".config/microsoft-edge-beta/Default/History"),
        ],
    },
    "brave": {
        "win32": [
            *_profile_paths("BraveSoftware/Brave-Browser/User Data/Default/History"),
            *_profile_paths("BraveSoftware/Brave-Browser/User/Default/History"),
        ],
        "darwin": _profile_paths("BraveSoftware/Brave-Browser/Default/History"),
        "linux": _profile_paths(".config/BraveSoftware/Brave-Browser/Default/History"),
    },
    "opera": {
        "win32": [
            "Opera Software/Opera Stable/History",
            "Opera Software/Opera GX Stable/History",
        ],
        "darwin": [
            "com.operasoftware.Opera/History",
            "com.operasoftware.OperaGX/History",
        ],
        "linux": [".config/opera/History"],
    },
    "vivaldi": {
        "win32": _profile_paths("Vivaldi/User Data/Default/History"),
        "darwin": _profile_paths("Vivaldi/Default/History"),
        "linux": _profile_paths(".config/vivaldi/Default/History"),
    },
}

WINDOWS_USER_CHOICE_KEY = (
    r"HKEY_CURRENT_USER\Software\Microsoft\Windows\Shell\Associations"
    r"\UrlAssociations\http\UserChoice"
)

_PROFILE_SEGMENT = re.compile(r"^Profile \d+$", re.IGNORECASE)
_PLIST_ASSIGNMENT = re.compile(r'^\s*"?([\w.-]+)"?\s*=\s*"?([^";]*)"?;\s*$')


def match_browser(output: str, platform: str) -> str | None:
    """Map default-browser command output to a supported browser kind."""
    lowered = output.lower()
    for pattern, kind in DEFAULT_BROWSER_PATTERNS.get(platform, []):
        if pattern in lowered:
            return kind
    return None


def parse_ls_handlers(output: str) -> dict[str, str]:
    """Parse ``defaults read ... LSHandlers`` output into ``{scheme: bundle id}``.

    The output is an old-style plist array of dictionaries; nested
    dictionaries (``LSHandlerPreferredVersions``) are skipped.
    """
    handlers: dict[str, str] = {}
    depth = 0
    entry: dict[str, str] = {}
    for line in output.splitlines():
        stripped = line.strip()
        if stripped.endswith("{"):
            depth += 1
            if depth == 1:
                entry = {}
            continue
        if stripped.startswith("}"):
            if depth == 1:
                scheme = entry.get("LSHandlerURLScheme")
                role = entry.get("LSHandlerRoleAll")
                if scheme and role:
                    handlers[scheme.lower()] = role
            depth = max(0, depth - 1)
            continue
        if depth == 1:
            m = _PLIST_ASSIGNMENT.match(stripped)
            if m:
                entry[m.group(1)] = m.group(2)
    return handlers


def parse_profile_from_history_path(history_path: Path | str) -> str | None:
    segments = [s for s in re.split(r"[\\/]+", str(history_path)) if s]
    for segment in segments:
        if segment == "Default" or _PROFILE_SEGMENT.match(segment):
            return segment
    return None


def browser_base_path(platform: str, home: Path, env: dict[str, str]) -> Path:
    """Root under which browser user-data directories live."""
    if platform == "win32":
        local = env.get("LOCALAPPDATA")
        return Path(local) if local else home / "AppData" / "Local"
    if platform == "darwin":
        return home / "Library" / "Application Support"
    return home


def _mtime(path: Path) -> float | None:
    try:
        return path.stat().st_mtime
    except OSError:
        return None


class BrowserLocator:
    """Resolve a ``BrowserTarget`` without asking the user."""

    def __init__(
        self,
        probe: ProcessProbe | None = None,
        platform: str | None = None,
        home: Path | None = None,
        env: dict[str, str] | None = None,
        detection_order: tuple[str, ...] = DETECTION_STRATEGIES,
    ):
        self.probe = probe or ProcessProbe()
        self.platform = platform or current_platform()
        self.home = home or Path.home()
        self.env = dict(os.environ if env is None else env)
        self.detection_order = detection_order
        self.base_path = browser_base_path(self.platform, self.home, self.env)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def locate(self) -> BrowserTarget | None:
        """Return the first history store found by the configured strategies."""
        strategies = {
            "running": self._from_running,
            "default": self._from_default,
            "recent": self.find_most_recently_modified,
            "scan": self.scan_history_paths,
        }
        for name in self.detection_order:
            target = strategies[name]()
            if target:
                logger.info(
                    "Found %s history (%s, profile %s) at %s",
                    target.kind, name, target.profile_name, target.history_path,
                )
                return target
            logger.debug("Browser detection strategy %r found nothing", name)

        logger.info("No browser history found")
        return None

    def detect_running_browsers(self) -> list[str]:
        """Supported browsers with a live process, in priority order."""
        if self.platform == "win32":
            args = ["tasklist", "/FO", "CSV", "/NH"]
        else:
            args = ["ps", "-eo", "comm"]
        try:
            process_list = self.probe.run_text(args).lower()
        except ProbeError as e:
            logger.debug("Failed to list running processes: %s", e)
            return []

        running = []
        for kind in BROWSER_PRIORITY:
            names = BROWSER_PROCESSES[kind].get(self.platform, [])
            if any(name.lower() in process_list for name in names):
                running.append(kind)
        if running:
            logger.debug("Running browsers detected: %s", running)
        return running

    def detect_default_browser(self) -> str | None:
        """The OS default browser, if it is a supported Chromium browser."""
        if self.platform == "win32":
            return self._default_browser_windows()
        if self.platform == "darwin":
            return self._default_browser_mac()
        if self.platform == "linux":
            return self._default_browser_linux()
        return None

    def most_recent_profile(self, kind: str) -> str:
        """Profile whose History (or directory) was modified most recently."""
        browser_dirs = self._browser_dirs(kind)
        if not browser_dirs:
            return "Default"

        candidates = [
            (profile, browser_dir / profile)
            for browser_dir in browser_dirs
            for profile in PROFILE_CANDIDATES
        ]

        def _check(candidate: tuple[str, Path]) -> tuple[str, float] | None:
            profile, profile_path = candidate
            if not profile_path.is_dir():
                return None
            history_mtime = _mtime(profile_path / "History")
            if history_mtime is not None:
                return profile, history_mtime
            dir_mtime = _mtime(profile_path)
            return (profile, dir_mtime) if dir_mtime is not None else None

        with ThreadPoolExecutor(max_workers=min(8, len(candidates))) as pool:
            results = list(pool.map(_check, candidates))

        best_profile, best_mtime = "Default", 0.0
        for result in results:
            if result and result[1] > best_mtime:
                best_profile, best_mtime = result
        if best_mtime > 0:
            logger.debug(
                "Most recent profile for %s: %s (modified %s)",
                kind, best_profile, datetime.fromtimestamp(best_mtime).isoformat(),
            )
        return best_profile

    def history_path_for(self, kind: str, profile: str) -> Path | None:
        """Existing History file for ``kind``/``profile``, if any."""
        for browser_dir in self._browser_dirs(kind):
            candidate = browser_dir / profile / "History"
            if candidate.exists():
                return candidate
        return None

    def find_most_recently_modified(self) -> BrowserTarget | None:
        """Browser whose resolved History file has the latest mtime."""
        best: tuple[float, BrowserTarget] | None = None
        for kind in BROWSER_PRIORITY:
            profile = self.most_recent_profile(kind)
            history_path = self.history_path_for(kind, profile)
            if not history_path:
                continue
            mtime = _mtime(history_path)
            if mtime is None:
                continue
            if best is None or mtime > best[0]:
                best = (
                    mtime,
                    BrowserTarget(
                        kind=kind,
                        history_path=history_path,
                        profile_name=parse_profile_from_history_path(history_path),
                    ),
                )
        return best[1] if best else None

    def scan_history_paths(self) -> BrowserTarget | None:
        """First existing path from the static per-OS candidate table."""
        for kind in BROWSER_PRIORITY:
            for rel in BROWSER_HISTORY_PATHS[kind].get(self.platform, []):
                history_path = self.base_path / rel
                if history_path.exists():
                    return BrowserTarget(
                        kind=kind,
                        history_path=history_path,
                        profile_name=parse_profile_from_history_path(history_path),
                    )
        return None

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _from_running(self) -> BrowserTarget | None:
        for kind in self.detect_running_browsers():
            profile = self.most_recent_profile(kind)
            history_path = self.history_path_for(kind, profile)
            if history_path:
                return BrowserTarget(kind=kind, history_path=history_path, profile_name=profile)
        return None

    def _from_default(self) -> BrowserTarget | None:
        kind = self.detect_default_browser()
        if not kind:
            return None
        profile = self.most_recent_profile(kind)
        history_path = self.history_path_for(kind, profile)
        if history_path:
            return BrowserTarget(kind=kind, history_path=history_path, profile_name=profile)
        if profile != "Default":
            history_path = self.history_path_for(kind, "Default")
            if history_path:
                return BrowserTarget(kind=kind, history_path=history_path, profile_name="Default")
        logger.debug("Default browser %s has no accessible history", kind)
        return None

    def _default_browser_windows(self) -> str | None:
        try:
            output = self.probe.run_text(["reg", "query", WINDOWS_USER_CHOICE_KEY, "/v", "ProgId"])
        except ProbeError as e:
            logger.debug("Failed to read default browser from registry: %s", e)
            return None
        kind = match_browser(output, "win32")
        if not kind:
            logger.debug("Could not match ProgId to a supported browser: %s", output)
        return kind

    def _default_browser_mac(self) -> str | None:
        prefs = (
            self.home / "Library" / "Preferences" / "com.apple.LaunchServices"
            / "com.apple.launchservices.secure"
        )
        try:
            output = self.probe.run_text(["defaults", "read", str(prefs), "LSHandlers"])
            bundle_id = parse_ls_handlers(output).get("http", "")
        except ProbeError as e:
            logger.debug("LaunchServices lookup failed: %s", e)
            bundle_id = ""

        if bundle_id:
            kind = match_browser(bundle_id, "darwin")
            if not kind:
                logger.debug("Default browser bundle ID not supported: %s", bundle_id)
            return kind

        try:
            output = self.probe.run_text(
                ["perl", "-MMac::InternetConfig", "-le", 'print +(GetICHelper "http")[1]']
            )
        except ProbeError as e:
            logger.debug("InternetConfig lookup failed: %s", e)
            return None
        return match_browser(output, "darwin")

    def _default_browser_linux(self) -> str | None:
        try:
            output = self.probe.run_text(["xdg-settings", "get", "default-web-browser"])
        except ProbeError as e:
            logger.debug("xdg-settings lookup failed: %s", e)
            return None
        return match_browser(output, "linux")

    def _browser_dirs(self, kind: str) -> list[Path]:
        dirs = BROWSER_BASE_DIRS.get(kind, {})
        rels = [dirs.get(self.platform)]
        if self.platform == "win32":
            rels.append(dirs.get("win32_alt"))
        return [self.base_path / rel for rel in rels if rel]
