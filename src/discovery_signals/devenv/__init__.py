"""Development environment, shell history and active project signals."""

from discovery_signals.devenv.models import (
    IDEExtension,
    IDESettings,
    GitConfig,
    DevEnvironmentSignals,
    CommandFrequency,
    ShellAnalysis,
    DevProject,
)
from discovery_signals.devenv.environment import (
    DevEnvironmentCollector,
    parse_git_config,
    format_dev_environment_for_synthesis,
)
from discovery_signals.devenv.shell_history import (
    analyze_shell_history,
    format_shell_analysis_for_synthesis,
)
from discovery_signals.devenv.projects import (
    collect_dev_projects,
    format_dev_projects_for_synthesis,
)

__all__ = [
    "IDEExtension",
    "IDESettings",
    "GitConfig",
    "DevEnvironmentSignals",
    "CommandFrequency",
    "ShellAnalysis",
    "DevProject",
    "DevEnvironmentCollector",
    "parse_git_config",
    "format_dev_environment_for_synthesis",
    "analyze_shell_history",
    "format_shell_analysis_for_synthesis",
    "collect_dev_projects",
    "format_dev_projects_for_synthesis",
]
