"""Per-tool behavior table: launch command and status markers.

Adding a tool means adding a `Tool` member and one `ToolProfile` row.
Marker rows are matched top to bottom and the first hit wins: approval
prompts sit above the busy indicator, error banners above the idle prompt.
"""

import re
import shlex
from dataclasses import dataclass, field

from agent_orchestrator.config import ResolvedConfig
from agent_orchestrator.models import SessionStatus, Shortcut, Tool

Marker = tuple[SessionStatus, re.Pattern[str]]


def _rows(*rows: tuple[SessionStatus, str]) -> tuple[Marker, ...]:
    return tuple((status, re.compile(pattern, re.MULTILINE)) for status, pattern in rows)


@dataclass(frozen=True)
class ToolProfile:
    label: str
    executable: str | None
    skip_permissions_flag: str | None = None
    markers: tuple[Marker, ...] = field(default_factory=tuple)


TOOL_PROFILES: dict[Tool, ToolProfile] = {
    Tool.CLAUDE: ToolProfile(
        label="Claude Code",
        executable="claude",
        skip_permissions_flag="--dangerously-skip-permissions",
        markers=_rows(
            (SessionStatus.WAITING, r"Do you want to (proceed|make this edit|create|run)"),
            (SessionStatus.WAITING, r"❯\s*1\.\s*Yes"),
            (SessionStatus.RUNNING, r"esc to interrupt"),
            (SessionStatus.ERROR, r"API Error|Credit balance is too low|Invalid API key"),
            (SessionStatus.IDLE, r"^\s*[│|]?\s*(>|❯)(\s|\xa0|$)"),
            (SessionStatus.IDLE, r"\? for shortcuts"),
        ),
    ),
    Tool.OPENCODE: ToolProfile(
        label="OpenCode",
        executable="opencode",
        markers=_rows(
            (SessionStatus.WAITING, r"Permission required|Allow (once|always)"),
            (SessionStatus.RUNNING, r"esc (to )?interrupt|Working\.\.\."),
            (SessionStatus.ERROR, r"^\s*Error:|ProviderInitError"),
            (SessionStatus.IDLE, r"enter send|ctrl\+p commands"),
        ),
    ),
    Tool.GEMINI: ToolProfile(
        label="Gemini",
        executable="gemini",
        markers=_rows(
            (SessionStatus.WAITING, r"Allow execution|Apply this change\?|Waiting for user confirmation"),
            (SessionStatus.RUNNING, r"esc to cancel"),
            (SessionStatus.ERROR, r"\[API Error|✕ .*[Ee]rror"),
            (SessionStatus.IDLE, r"Type your message"),
        ),
    ),
    Tool.CODEX: ToolProfile(
        label="Codex",
        executable="codex",
        markers=_rows(
            (SessionStatus.WAITING, r"Allow command\?|Would you like to run|Approve|\[y/N\]"),
            (SessionStatus.RUNNING, r"esc to interrupt|Working \("),
            (SessionStatus.ERROR, r"stream error|^\s*■ .*[Ee]rror"),
            (SessionStatus.IDLE, r"⏎ send|send message|▌"),
        ),
    ),
    # cli_options is the whole command line.
    Tool.CUSTOM: ToolProfile(label="Custom", executable=None),
    Tool.SHELL: ToolProfile(
        label="Shell",
        executable=None,
        markers=_rows(
            (SessionStatus.IDLE, r"[$#%❯>]\s*\Z"),
        ),
    ),
}


def profile_for(tool: Tool) -> ToolProfile:
    return TOOL_PROFILES[tool]


def build_command(shortcut: Shortcut, config: ResolvedConfig | None = None) -> str | None:
    """Launch command for a shortcut, or None to start the default shell."""
    profile = profile_for(shortcut.tool)
    options = shortcut.cli_options.strip()

    if shortcut.tool is Tool.SHELL:
        return None
    if shortcut.tool is Tool.CUSTOM:
        return options or None

    executable = (config.executable_for(shortcut.tool) if config else None) or profile.executable
    parts = [shlex.quote(executable)]
    if shortcut.skip_permissions and profile.skip_permissions_flag:
        parts.append(profile.skip_permissions_flag)
    if options:
        parts.append(options)
    return " ".join(parts)
