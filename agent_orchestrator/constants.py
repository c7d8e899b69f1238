from pathlib import Path

STATE_DIR = Path.home() / ".config" / "av"
CONFIG_ENV_VAR = "AV_CONFIG"

TMUX_SESSION_PREFIX = "av"
TMUX_TIMEOUT_S = 5.0
POLL_INTERVAL_S = 2.0
CAPTURE_LINES = 40

DEFAULT_BRANCH_PREFIX = "av/"
DEFAULT_DEVELOP_BRANCH = "develop"

MAX_KEY_LENGTH = 2
MAX_GROUP_NAME_LENGTH = 50

# Navigation, global actions, their shifted forms, quick-jump slots.
RESERVED_SHORTCUT_KEYS = frozenset(
    {"h", "j", "k", "l"}
    | {"n", "d", "r", "f", "g", "m", "q"}
    | {"R", "F", "S"}
    | {str(i) for i in range(1, 10)}
)
