import base64
import logging
import os
import subprocess
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pushscan.content import MAX_FILE_CHANGES, FileContent
from pushscan.errors import CloneError, GitError, RepositoryScanError, ScanTimeoutError

logger = logging.getLogger(__name__)

BINARY_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".svg",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".tar", ".gz", ".bz2", ".7z", ".rar",
    ".exe", ".dll", ".so", ".dylib",
    ".mp3", ".mp4", ".avi", ".mov", ".wmv",
    ".woff", ".woff2", ".ttf", ".eot",
)

SKIP_PATHS = (
    "node_modules/", "vendor/", ".git/", "dist/", "build/",
    "target/", "bin/", "obj/", ".gradle/", "__pycache__/",
)

CLONE_USERNAME = "git"


class Deadline:
    """A fixed point in time after which the scan must stop."""

    def __init__(self, seconds: float, clock=time.monotonic):
        self._clock = clock
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def check(self) -> None:
        if self.expired():
            raise ScanTimeoutError()


def run_git(args: list[str], cwd: Path, timeout: float, env: dict | None = None) -> subprocess.CompletedProcess:
    """Run git with prompts disabled.

    Raises ScanTimeoutError when the command outlives `timeout` and GitError
    on any other failure.
    """
    base_env = os.environ.copy()
    base_env["GIT_TERMINAL_PROMPT"] = "0"
    if env:
        base_env.update(env)
    try:
        return subprocess.run(
            ["git"] + args,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="surrogateescape",
            timeout=timeout,
            check=True,
            env=base_env,
        )
    except FileNotFoundError as e:
        raise GitError("The 'git' command was not found. Is it installed and in your PATH?") from e
    except subprocess.CalledProcessError as e:
        error_message = (e.stderr or e.stdout or "").strip()
        raise GitError(f"git {args[0]} failed: {error_message}") from e
    except subprocess.TimeoutExpired as e:
        raise ScanTimeoutError() from e


def _auth_env(token: str) -> dict:
    # passed through the environment so the token never shows up in argv
    basic = base64.b64encode(f"{CLONE_USERNAME}:{token}".encode()).decode()
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
    }


@contextmanager
def clone_repository(clone_url: str, token: str, deadline: Deadline) -> Iterator[Path]:
    """Shallow-clone the default branch head into a throwaway directory."""
    deadline.check()
    with tempfile.TemporaryDirectory(prefix="pushscan-") as tmp:
        dest = Path(tmp) / "repo"
        try:
            run_git(
                ["clone", "--depth", "1", "--single-branch", "--no-tags", clone_url, str(dest)],
                cwd=Path(tmp),
                timeout=deadline.remaining(),
                env=_auth_env(token),
            )
        except GitError as e:
            raise CloneError(f"failed to clone repository: {e}") from e
        yield dest


def should_skip_tree_file(name: str, size: int, max_size: int = MAX_FILE_CHANGES) -> bool:
    if size > max_size:
        return True
    lowered = name.lower()
    if lowered.endswith(BINARY_EXTENSIONS):
        return True
    return any(skip in name for skip in SKIP_PATHS)


def _display_name(name: str) -> str:
    # names that are not valid UTF-8 arrive surrogate-escaped from git
    return name.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="replace")


def iter_snapshot_files(repo_path: Path, deadline: Deadline, max_size: int = MAX_FILE_CHANGES) -> Iterator[FileContent]:
    try:
        listing = run_git(["ls-files", "-z"], cwd=repo_path, timeout=deadline.remaining())
    except GitError as e:
        raise RepositoryScanError(f"failed to list repository files: {e}") from e

    for name in listing.stdout.split("\0"):
        if not name:
            continue
        deadline.check()
        path = repo_path / name
        display = _display_name(name)
        # submodules and symlinks have no blob content to scan
        if path.is_symlink() or not path.is_file():
            continue
        if should_skip_tree_file(name, path.stat().st_size, max_size):
            continue
        try:
            data = path.read_bytes()
        except OSError as e:
            raise RepositoryScanError(f"failed to read file contents: {display}: {e}") from e
        yield FileContent(path=display, content=data.decode("utf-8", errors="replace"))
