import logging
from pathlib import Path

from pushscan.content import MAX_FILE_CHANGES
from pushscan.errors import GitHubAPIError, IssueError, PushScanError, RepositoryScanError, ScanTimeoutError
from pushscan.events import (
    PUSH_EVENT,
    is_eligible_for_commit_scan,
    is_eligible_for_full_scan,
    parse_push_event,
    pushed_branch,
)
from pushscan.github_client import GitHubAPI, GitHubApp
from pushscan.log import log_context
from pushscan.report import ISSUE_LABEL, ISSUE_TITLE, build_report
from pushscan.scanners.secrets import Finding, SecretDetector
from pushscan.snapshot import Deadline, clone_repository, iter_snapshot_files

logger = logging.getLogger(__name__)

FULL_SCAN_TIMEOUT = 60.0
# only the most recent open issues are checked for a duplicate
ISSUE_SEARCH_LIMIT = 10


class FullRepoScanHandler:
    """Scans the whole default branch and opens at most one security issue."""

    def __init__(
        self,
        app: GitHubApp,
        detector: SecretDetector,
        max_file_changes: int = MAX_FILE_CHANGES,
        timeout: float = FULL_SCAN_TIMEOUT,
    ):
        self.app = app
        self.detector = detector
        self.max_file_changes = max_file_changes
        self.timeout = timeout

    def handles(self) -> list[str]:
        return [PUSH_EVENT]

    def handle(self, event_type: str, delivery_id: str, payload: bytes) -> None:
        event = parse_push_event(payload)
        if not is_eligible_for_commit_scan(event):
            logger.debug("Skipping event - no commits or not a branch push (ref=%s)", event.ref)
            return
        if not is_eligible_for_full_scan(event):
            logger.debug(
                "Skipping full scan - push to non-default branch (pushed=%s default=%s)",
                pushed_branch(event),
                event.repository.default_branch,
            )
            return

        owner = event.repository.owner_login
        repo = event.repository.name
        with log_context(repo=event.repository.full_name):
            with self.app.installation_client(event.installation.id) as client:
                logger.info("Starting full repository scan of branch %s", pushed_branch(event))
                deadline = Deadline(self.timeout)
                try:
                    findings = self.scan_repository(client, owner, repo, event.installation.id, deadline)
                except ScanTimeoutError:
                    raise
                except PushScanError as e:
                    if deadline.expired():
                        raise ScanTimeoutError() from e
                    raise

                logger.info("Full repository scan complete: %d finding(s)", len(findings))
                if not findings:
                    logger.info("No secrets found in repository")
                    return
                self.open_security_issue(client, owner, repo, findings)

    def scan_repository(
        self, client: GitHubAPI, owner: str, repo: str, installation_id: int, deadline: Deadline
    ) -> list[Finding]:
        try:
            repository = client.get_repository(owner, repo)
        except GitHubAPIError as e:
            raise RepositoryScanError(f"failed to get repository details: {e}") from e
        clone_url = repository.get("clone_url") or ""
        if not clone_url:
            raise RepositoryScanError("invalid clone URL")
        deadline.check()

        # a fresh token per scan; it must outlive only the clone
        token = self.app.create_installation_token(installation_id)
        logger.debug("Cloning repository from %s", clone_url)
        with clone_repository(clone_url, token, deadline) as path:
            return self.scan_snapshot(path, deadline)

    def scan_snapshot(self, path: Path, deadline: Deadline) -> list[Finding]:
        findings: list[Finding] = []
        for item in iter_snapshot_files(path, deadline, self.max_file_changes):
            for finding in self.detector.detect(item.content):
                finding.file = item.path
                findings.append(finding)
        return findings

    def find_existing_issue(self, client: GitHubAPI, owner: str, repo: str) -> dict | None:
        issues = client.list_open_issues(owner, repo, [ISSUE_LABEL], per_page=ISSUE_SEARCH_LIMIT)
        for issue in issues:
            if issue.get("title") == ISSUE_TITLE:
                return issue
        return None

    def open_security_issue(self, client: GitHubAPI, owner: str, repo: str, findings: list[Finding]) -> int | None:
        try:
            existing = self.find_existing_issue(client, owner, repo)
        except GitHubAPIError as e:
            logger.warning("Failed to check for existing security issues, proceeding to create new issue: %s", e)
        else:
            if existing is not None:
                logger.info("Security issue #%s already exists, skipping creation", existing.get("number"))
                return None

        body = build_report(findings)
        try:
            number = client.create_issue(owner, repo, ISSUE_TITLE, body, [ISSUE_LABEL])
        except GitHubAPIError as e:
            raise IssueError(f"failed to create issue: {e}") from e
        logger.info("Created security issue #%d with %d finding(s)", number, len(findings))
        return number
