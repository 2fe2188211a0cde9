import logging

from pushscan.content import MAX_FILE_CHANGES, iter_commit_contents, resolve_changed_files
from pushscan.errors import CheckRunError, GitHubAPIError
from pushscan.events import PUSH_EVENT, is_eligible_for_commit_scan, parse_push_event
from pushscan.github_client import GitHubAPI, GitHubApp
from pushscan.log import log_context
from pushscan.report import (
    CHECK_RUN_NAME,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    SUMMARY_IN_PROGRESS,
    TITLE_IN_PROGRESS,
    ScanResult,
    aggregate,
    check_run_output,
    error_output,
)
from pushscan.scanners.secrets import Finding, SecretDetector

logger = logging.getLogger(__name__)


class CommitScanHandler:
    """Scans every commit of a branch push and reports one check run per commit."""

    def __init__(self, app: GitHubApp, detector: SecretDetector, max_file_changes: int = MAX_FILE_CHANGES):
        self.app = app
        self.detector = detector
        self.max_file_changes = max_file_changes

    def handles(self) -> list[str]:
        return [PUSH_EVENT]

    def handle(self, event_type: str, delivery_id: str, payload: bytes) -> None:
        event = parse_push_event(payload)
        if not is_eligible_for_commit_scan(event):
            logger.debug("Skipping event - no commits or not a branch push (ref=%s)", event.ref)
            return

        owner = event.repository.owner_login
        repo = event.repository.name
        with log_context(repo=event.repository.full_name):
            with self.app.installation_client(event.installation.id) as client:
                logger.info("Processing %d commit(s) for secret scanning", len(event.commits))
                for commit in event.commits:
                    if not commit.id:
                        continue
                    with log_context(commit_sha=commit.id):
                        try:
                            self.scan_commit(client, owner, repo, commit.id)
                        except Exception:
                            # one bad commit must not stop the rest of the push
                            logger.exception("Failed to scan commit %s", commit.id)

    def scan_commit(self, client: GitHubAPI, owner: str, repo: str, sha: str) -> ScanResult:
        try:
            check_run_id = client.create_check_run(
                owner, repo, CHECK_RUN_NAME, sha, STATUS_IN_PROGRESS, TITLE_IN_PROGRESS, SUMMARY_IN_PROGRESS
            )
        except GitHubAPIError as e:
            raise CheckRunError(f"failed to create check run: {e}") from e
        logger.debug("Created check run %d", check_run_id)

        try:
            findings, files_scanned = self._scan_changes(client, owner, repo, sha)
        except Exception:
            self._mark_errored(client, owner, repo, check_run_id)
            raise

        result = aggregate(findings)
        output = check_run_output(result)
        try:
            client.update_check_run(
                owner,
                repo,
                check_run_id,
                CHECK_RUN_NAME,
                STATUS_COMPLETED,
                output.conclusion,
                output.title,
                output.summary,
                completed=True,
            )
        except GitHubAPIError as e:
            raise CheckRunError(f"failed to update check run: {e}") from e

        logger.info(
            "Updated check run %d with scan results: conclusion=%s findings=%d files_scanned=%d",
            check_run_id,
            output.conclusion,
            result.leak_count,
            files_scanned,
        )
        return result

    def _scan_changes(self, client: GitHubAPI, owner: str, repo: str, sha: str) -> tuple[list[Finding], int]:
        files = resolve_changed_files(client, owner, repo, sha)
        findings: list[Finding] = []
        files_scanned = 0
        for item in iter_commit_contents(client, owner, repo, sha, files, self.max_file_changes):
            for finding in self.detector.detect(item.content):
                finding.file = item.path
                findings.append(finding)
            files_scanned += 1
        return findings, files_scanned

    def _mark_errored(self, client: GitHubAPI, owner: str, repo: str, check_run_id: int) -> None:
        output = error_output()
        try:
            client.update_check_run(
                owner,
                repo,
                check_run_id,
                CHECK_RUN_NAME,
                STATUS_COMPLETED,
                output.conclusion,
                output.title,
                output.summary,
                completed=True,
            )
        except GitHubAPIError as e:
            logger.error("Failed to update check run %d with error status: %s", check_run_id, e)
