"""Configuration loading.

Reads `~/.config/av/config.toml` (or the file named by `$AV_CONFIG`) and
flattens it into a `ResolvedConfig` with every value filled.
"""

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel

from agent_orchestrator.constants import (
    CAPTURE_LINES,
    CONFIG_ENV_VAR,
    DEFAULT_BRANCH_PREFIX,
    DEFAULT_DEVELOP_BRANCH,
    POLL_INTERVAL_S,
    STATE_DIR,
    TMUX_TIMEOUT_S,
)
from agent_orchestrator.models import Tool

_SECTIONS = ("storage", "tmux", "worktree", "tools")


class StorageConfig(BaseModel):
    db_path: str = ""


class TmuxConfig(BaseModel):
    timeout_s: float = 0.0
    poll_interval_s: float = 0.0
    capture_lines: int = 0


class WorktreeConfig(BaseModel):
    base_dir: str = ""
    branch_prefix: str = ""
    develop_branch: str = ""


class ToolsConfig(BaseModel):
    """Executable overrides, e.g. `claude = "/opt/bin/claude"`."""

    claude: str = ""
    opencode: str = ""
    gemini: str = ""
    codex: str = ""


class AVConfig(BaseModel):
    storage: StorageConfig = StorageConfig()
    tmux: TmuxConfig = TmuxConfig()
    worktree: WorktreeConfig = WorktreeConfig()
    tools: ToolsConfig = ToolsConfig()


class ResolvedConfig(BaseModel):
    """Flat config with all values guaranteed filled."""

    db_path: Path
    tmux_timeout_s: float
    poll_interval_s: float
    capture_lines: int
    worktree_base_dir: Path | None
    branch_prefix: str
    develop_branch: str
    tool_executables: dict[Tool, str] = {}

    def executable_for(self, tool: Tool) -> str | None:
        return self.tool_executables.get(tool)


def config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    return Path(override).expanduser() if override else STATE_DIR / "config.toml"


def load_toml(path: Path) -> AVConfig:
    if not path.exists():
        return AVConfig()
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return AVConfig.model_validate(data)


def save_config(config: AVConfig, path: Path | None = None) -> Path:
    """Write non-default values back as TOML. Returns the path written."""
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = []
    for section_name in _SECTIONS:
        section = getattr(config, section_name)
        section_lines: list[str] = []
        for field_name, field_info in type(section).model_fields.items():
            value = getattr(section, field_name)
            if value != field_info.default:
                section_lines.append(f"{field_name} = {_toml_value(value)}")
        if section_lines:
            lines.append(f"[{section_name}]")
            lines.extend(section_lines)
            lines.append("")
    path.write_text("\n".join(lines) + "\n" if lines else "")
    return path


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{_escape_toml_str(value)}"'
    return str(value)


def _escape_toml_str(s: str) -> str:
    return s.replace("\\", "\\\\").replace('"', '\\"')


def resolve(raw: AVConfig) -> ResolvedConfig:
    base_dir = raw.worktree.base_dir
    return ResolvedConfig(
        db_path=Path(raw.storage.db_path).expanduser() if raw.storage.db_path else STATE_DIR / "av.db",
        tmux_timeout_s=raw.tmux.timeout_s or TMUX_TIMEOUT_S,
        poll_interval_s=raw.tmux.poll_interval_s or POLL_INTERVAL_S,
        capture_lines=raw.tmux.capture_lines or CAPTURE_LINES,
        worktree_base_dir=Path(base_dir).expanduser() if base_dir else None,
        branch_prefix=raw.worktree.branch_prefix or DEFAULT_BRANCH_PREFIX,
        develop_branch=raw.worktree.develop_branch or DEFAULT_DEVELOP_BRANCH,
        tool_executables={
            Tool(name): value
            for name, value in raw.tools.model_dump().items()
            if value
        },
    )


def load_config(path: Path | None = None) -> ResolvedConfig:
    """Load and resolve configuration, falling back to defaults for anything unset."""
    return resolve(load_toml(path or config_path()))
