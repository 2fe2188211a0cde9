import logging
from collections.abc import Iterator
from dataclasses import dataclass

from pushscan.errors import CommitDiffError, GitHubAPIError
from pushscan.github_client import GitHubAPI

logger = logging.getLogger(__name__)

# git's well-known empty tree object, used as the base for root commits
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
STATUS_REMOVED = "removed"
MAX_FILE_CHANGES = 1000


@dataclass
class CommitFile:
    filename: str
    status: str = "modified"
    changes: int = 0

    @classmethod
    def from_api(cls, data: dict) -> "CommitFile":
        return cls(
            filename=data.get("filename", ""),
            status=data.get("status", "modified"),
            changes=int(data.get("changes") or 0),
        )


@dataclass
class FileContent:
    path: str
    content: str


def resolve_changed_files(client: GitHubAPI, owner: str, repo: str, sha: str) -> list[CommitFile]:
    """Return the files changed by `sha` relative to its parent.

    Root commits have no parent, so a failed comparison is retried against
    the empty tree before giving up.
    """
    try:
        files = client.compare_commits(owner, repo, f"{sha}~1", sha)
    except GitHubAPIError as e:
        logger.debug("parent comparison failed for %s, retrying against empty tree: %s", sha, e)
        try:
            files = client.compare_commits(owner, repo, EMPTY_TREE_SHA, sha)
        except GitHubAPIError as e2:
            raise CommitDiffError(f"failed to get commit diff: {e2}") from e2
    return [CommitFile.from_api(f) for f in files]


def iter_commit_contents(
    client: GitHubAPI,
    owner: str,
    repo: str,
    sha: str,
    files: list[CommitFile],
    max_changes: int = MAX_FILE_CHANGES,
) -> Iterator[FileContent]:
    for file in files:
        if file.status == STATUS_REMOVED:
            continue
        if file.changes > max_changes:
            logger.warning("Skipping large file %s (%d changes)", file.filename, file.changes)
            continue
        try:
            content = client.get_file_contents(owner, repo, file.filename, sha)
        except (GitHubAPIError, ValueError) as e:
            logger.warning("Failed to get file content for %s: %s", file.filename, e)
            continue
        if not content:
            continue
        yield FileContent(path=file.filename, content=content)
