import re

from agent_orchestrator.models import SessionStatus, Tool
from agent_orchestrator.tools import profile_for

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07")


def visible_text(pane_text: str, lines: int | None = None) -> str:
    """Strip ANSI escapes and trailing blank lines, keeping the last `lines` lines."""
    text = _ANSI_RE.sub("", pane_text)
    rows = [row.rstrip() for row in text.splitlines()]
    while rows and not rows[-1]:
        rows.pop()
    if lines is not None:
        rows = rows[-lines:]
    return "\n".join(rows)


def classify(tool: Tool, pane_text: str, process_alive: bool) -> SessionStatus:
    """Classify a session from its captured pane and process liveness.

    A dead process is always `stopped`. Otherwise the tool's marker rows
    are tried in order and the first match decides. Tools without markers,
    and screens where no marker matches, count as `running` while alive.
    """
    if not process_alive:
        return SessionStatus.STOPPED

    text = visible_text(pane_text)
    for status, pattern in profile_for(tool).markers:
        if pattern.search(text):
            return status
    return SessionStatus.RUNNING
