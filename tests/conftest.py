# tests/conftest.py: In-memory GitHub fakes shared by the unit tests.

import json

import pytest

from pushscan.errors import GitHubAPIError
from pushscan.scanners.secrets import Finding


class FakeGitHub:
    """Records every call and serves canned responses."""

    def __init__(self):
        self.files: list[dict] = []
        self.failing_bases: set[str] = set()
        self.contents: dict[str, str] = {}
        self.failing_paths: set[str] = set()
        self.fail: dict[str, Exception] = {}
        self.open_issues: list[dict] = []
        self.repository = {"clone_url": "https://github.com/octo/demo.git", "default_branch": "main"}
        self.calls: list[tuple] = []
        self.check_runs: list[dict] = []
        self.check_run_updates: list[dict] = []
        self.created_issues: list[dict] = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True

    def _maybe_fail(self, name):
        if name in self.fail:
            raise self.fail[name]

    @property
    def writes(self) -> int:
        return len(self.check_runs) + len(self.check_run_updates) + len(self.created_issues)

    def compare_commits(self, owner, repo, base, head):
        self.calls.append(("compare_commits", base, head))
        if base in self.failing_bases:
            raise GitHubAPIError("GitHub 404: compare", status_code=404)
        return self.files

    def get_file_contents(self, owner, repo, path, ref):
        self.calls.append(("get_file_contents", path, ref))
        if path in self.failing_paths:
            raise GitHubAPIError("GitHub 500: contents", status_code=500)
        return self.contents.get(path, "")

    def create_check_run(self, owner, repo, name, head_sha, status, title, summary):
        self.calls.append(("create_check_run", head_sha))
        self._maybe_fail("create_check_run")
        self.check_runs.append(
            {"name": name, "head_sha": head_sha, "status": status, "title": title, "summary": summary}
        )
        return len(self.check_runs)

    def update_check_run(self, owner, repo, check_run_id, name, status, conclusion, title, summary, completed=False):
        self.calls.append(("update_check_run", check_run_id))
        self._maybe_fail("update_check_run")
        self.check_run_updates.append(
            {
                "id": check_run_id,
                "name": name,
                "status": status,
                "conclusion": conclusion,
                "title": title,
                "summary": summary,
                "completed": completed,
            }
        )

    def list_open_issues(self, owner, repo, labels, per_page=10):
        self.calls.append(("list_open_issues", tuple(labels), per_page))
        self._maybe_fail("list_open_issues")
        return self.open_issues

    def create_issue(self, owner, repo, title, body, labels):
        self.calls.append(("create_issue", title))
        self._maybe_fail("create_issue")
        self.created_issues.append({"title": title, "body": body, "labels": labels})
        return 100 + len(self.created_issues)

    def get_repository(self, owner, repo):
        self.calls.append(("get_repository", owner, repo))
        self._maybe_fail("get_repository")
        return self.repository


class FakeApp:
    def __init__(self, client: FakeGitHub):
        self.client = client
        self.installation_ids: list[int] = []
        self.tokens_minted = 0

    def installation_client(self, installation_id):
        self.installation_ids.append(installation_id)
        return self.client

    def create_installation_token(self, installation_id):
        self.tokens_minted += 1
        return "ghs_installationtoken"


class StubDetector:
    """Reports one finding per line of the form 'LEAK <rule-id>'."""

    def __init__(self):
        self.scanned: list[str] = []

    def detect(self, text):
        self.scanned.append(text)
        findings = []
        for i, line in enumerate(text.splitlines(), 1):
            if line.startswith("LEAK"):
                findings.append(Finding(rule_id=line[len("LEAK"):].strip(), start_line=i))
        return findings


def make_push_payload(
    ref="refs/heads/main",
    commits=("c0ffee1",),
    default_branch="main",
    installation_id=42,
) -> bytes:
    return json.dumps(
        {
            "ref": ref,
            "repository": {
                "name": "demo",
                "full_name": "octo/demo",
                "owner": {"login": "octo", "name": "octo"},
                "default_branch": default_branch,
                "clone_url": "https://github.com/octo/demo.git",
            },
            "commits": [{"id": sha} for sha in commits],
            "installation": {"id": installation_id},
        }
    ).encode()


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def fake_app(github):
    return FakeApp(github)


@pytest.fixture
def detector():
    return StubDetector()
