import logging
import re
from pathlib import Path
from typing import NamedTuple

import git as gitpython

from agent_orchestrator.config import ResolvedConfig
from agent_orchestrator.errors import WorktreeCreationError
from agent_orchestrator.models import Shortcut

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")


class WorktreeInfo(NamedTuple):
    path: str
    branch: str | None


def slugify(value: str) -> str:
    slug = _SLUG_RE.sub("-", value.strip()).strip("-.").lower()
    return slug or "x"


def branch_name_for(shortcut: Shortcut, config: ResolvedConfig) -> str:
    if shortcut.worktree_branch.strip():
        return shortcut.worktree_branch.strip()
    # Keys differing only in case still get separate branches.
    return f"{config.branch_prefix}{slugify(shortcut.key)}-{slugify(shortcut.name)}-{slugify(shortcut.id)[:8]}"


def worktree_path_for(shortcut: Shortcut, branch: str, config: ResolvedConfig) -> Path:
    """Deterministic location: `<base>/<project dir name>/<branch slug>`."""
    project = Path(shortcut.project_path)
    base = config.worktree_base_dir or project.parent / ".worktrees"
    return base / project.name / slugify(branch.replace("/", "-"))


def _open_repo(project_path: str) -> gitpython.Repo:
    try:
        return gitpython.Repo(project_path)
    except (gitpython.InvalidGitRepositoryError, gitpython.NoSuchPathError) as e:
        raise WorktreeCreationError(project_path, "not a git repository") from e


def _branch_exists(repo: gitpython.Repo, branch: str) -> bool:
    try:
        repo.git.rev_parse("--verify", f"refs/heads/{branch}")
        return True
    except gitpython.GitCommandError:
        return False


def _current_branch(repo: gitpython.Repo) -> str:
    try:
        return repo.active_branch.name
    except TypeError:
        # Detached HEAD.
        return "HEAD"


def list_worktrees(repo: gitpython.Repo) -> dict[str, str]:
    """Map branch name -> worktree path, parsed from `git worktree list --porcelain`."""
    output = repo.git.worktree("list", "--porcelain")
    found: dict[str, str] = {}
    current_path = ""
    for line in output.splitlines():
        if line.startswith("worktree "):
            current_path = line[len("worktree "):]
        elif line.startswith("branch refs/heads/") and current_path:
            found[line[len("branch refs/heads/"):]] = current_path
        elif line == "":
            current_path = ""
    return found


def _same_path(a: str | Path, b: str | Path) -> bool:
    return Path(a).resolve() == Path(b).resolve()


def provision(shortcut: Shortcut, config: ResolvedConfig) -> WorktreeInfo:
    """Resolve the working directory for a shortcut, creating a worktree if requested.

    Reuses an existing worktree for the branch when it lives at the expected
    path. Raises WorktreeCreationError when the project is not a git repo,
    the branch is checked out elsewhere, or git fails.
    """
    if not shortcut.use_worktree:
        return WorktreeInfo(path=shortcut.project_path, branch=None)

    repo = _open_repo(shortcut.project_path)
    branch = branch_name_for(shortcut, config)
    wt_path = worktree_path_for(shortcut, branch, config)

    try:
        existing = list_worktrees(repo)
    except gitpython.GitCommandError as e:
        raise WorktreeCreationError(shortcut.project_path, str(e.stderr or e)) from e

    if branch in existing:
        if _same_path(existing[branch], wt_path):
            logger.debug("Reusing worktree", extra={"branch": branch, "path": str(wt_path)})
            return WorktreeInfo(path=str(wt_path), branch=branch)
        raise WorktreeCreationError(
            shortcut.project_path,
            f"branch '{branch}' is already checked out at {existing[branch]}",
        )

    if wt_path.exists():
        raise WorktreeCreationError(shortcut.project_path, f"path already exists: {wt_path}")

    try:
        wt_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WorktreeCreationError(shortcut.project_path, str(e)) from e

    try:
        if _branch_exists(repo, branch):
            repo.git.worktree("add", str(wt_path), branch)
        else:
            base = config.develop_branch if shortcut.use_base_develop else _current_branch(repo)
            repo.git.worktree("add", "-b", branch, str(wt_path), base)
    except gitpython.GitCommandError as e:
        raise WorktreeCreationError(shortcut.project_path, str(e.stderr or e).strip()) from e

    logger.info("Created worktree", extra={"branch": branch, "path": str(wt_path)})
    return WorktreeInfo(path=str(wt_path), branch=branch)
