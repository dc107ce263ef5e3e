"""Runtime configuration for a discovery run."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from discovery_signals.exceptions import ConfigError

DEFAULT_HOME = Path.home() / ".stellar"

# Browser detection strategies, tried in order until one yields a history store.
DETECTION_STRATEGIES = ("running", "default", "recent", "scan")

DEFAULT_MAX_OUTPUT_CHARS = 60_000


@dataclass
class DiscoveryConfig:
    """Paths, timeouts and policy knobs shared by every collector.

    Args:
        home: Application home; scratch copies go under ``home/cache`` and
            durable state under ``home/state``.
        detection_order: Browser detection strategies to try, in order.
    """

    home: Path = DEFAULT_HOME
    detection_order: tuple[str, ...] = DETECTION_STRATEGIES
    command_timeout: float = 10.0
    dock_timeout: float = 3.0
    usage_timeout: float = 10.0
    filesystem_timeout: float = 5.0
    collector_timeout: float = 60.0
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS
    env: dict[str, str] = field(default_factory=lambda: dict(os.environ))

    def __post_init__(self) -> None:
        self.home = Path(self.home).expanduser()
        unknown = [s for s in self.detection_order if s not in DETECTION_STRATEGIES]
        if unknown:
            raise ConfigError(
                f"Unknown browser detection strategies: {', '.join(unknown)}. "
                f"Expected any of: {', '.join(DETECTION_STRATEGIES)}"
            )
        if self.max_output_chars <= 0:
            raise ConfigError("max_output_chars must be positive")

    @property
    def cache_dir(self) -> Path:
        return self.home / "cache"

    @property
    def state_dir(self) -> Path:
        return self.home / "state"

    @property
    def core_memory_path(self) -> Path:
        return self.state_dir / "CORE_MEMORY.MD"

    @property
    def categories_path(self) -> Path:
        return self.state_dir / "discovery_categories.json"

    @property
    def identity_map_path(self) -> Path:
        return self.state_dir / "identity_map.json"

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> DiscoveryConfig:
        """Build a config from ``DISCOVERY_*`` environment variables."""
        env = dict(os.environ if env is None else env)
        kwargs: dict = {"env": env}

        home = env.get("DISCOVERY_HOME")
        if home:
            kwargs["home"] = Path(home)

        order = env.get("DISCOVERY_DETECTION_ORDER")
        if order:
            kwargs["detection_order"] = tuple(
                s.strip().lower() for s in order.split(",") if s.strip()
            )

        max_chars = env.get("DISCOVERY_MAX_OUTPUT_CHARS")
        if max_chars:
            try:
                kwargs["max_output_chars"] = int(max_chars)
            except ValueError as e:
                raise ConfigError(
                    f"DISCOVERY_MAX_OUTPUT_CHARS must be an integer, got {max_chars!r}"
                ) from e

        return cls(**kwargs)
