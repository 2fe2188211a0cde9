import base64
import logging
import time
from typing import Protocol
from urllib.parse import quote

import httpx
import jwt

from pushscan.errors import GitHubAPIError, InstallationTokenError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
    "User-Agent": "pushscan",
}
DEFAULT_TIMEOUT = 30.0


class GitHubAPI(Protocol):
    def compare_commits(self, owner: str, repo: str, base: str, head: str) -> list[dict]: ...

    def get_file_contents(self, owner: str, repo: str, path: str, ref: str) -> str: ...

    def create_check_run(
        self, owner: str, repo: str, name: str, head_sha: str, status: str, title: str, summary: str
    ) -> int: ...

    def update_check_run(
        self,
        owner: str,
        repo: str,
        check_run_id: int,
        name: str,
        status: str,
        conclusion: str,
        title: str,
        summary: str,
        completed: bool = False,
    ) -> None: ...

    def list_open_issues(self, owner: str, repo: str, labels: list[str], per_page: int = 10) -> list[dict]: ...

    def create_issue(self, owner: str, repo: str, title: str, body: str, labels: list[str]) -> int: ...

    def get_repository(self, owner: str, repo: str) -> dict: ...


def _timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _raise_for_status(method: str, url: str, r: httpx.Response) -> None:
    if r.is_success:
        return
    logger.error("%s %s -> %s: %s", method, url, r.status_code, r.text[:800])
    raise GitHubAPIError(f"GitHub {r.status_code}: {method} {url}", status_code=r.status_code)


def _decode(method: str, url: str, r: httpx.Response, expected=dict):
    try:
        data = r.json()
    except ValueError as e:
        raise GitHubAPIError(
            f"GitHub {r.status_code}: {method} {url}: invalid JSON response: {e}", status_code=r.status_code
        ) from e
    if not isinstance(data, expected):
        raise GitHubAPIError(
            f"GitHub {r.status_code}: {method} {url}: unexpected response type {type(data).__name__}",
            status_code=r.status_code,
        )
    return data


class InstallationClient:
    """Installation-scoped REST client implementing GitHubAPI."""

    def __init__(
        self,
        token: str,
        api_url: str = GITHUB_API,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={**HEADERS, "Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, url: str, expected=dict, **kwargs):
        """Send a request and return the decoded JSON body.

        Transport failures, error statuses and bodies that are not JSON of the
        `expected` type all raise GitHubAPIError.
        """
        try:
            r = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"GitHub request failed: {method} {url}: {e}") from e
        _raise_for_status(method, url, r)
        if expected is None:
            return None
        return _decode(method, url, r, expected)

    def compare_commits(self, owner: str, repo: str, base: str, head: str) -> list[dict]:
        data = self._request("GET", f"/repos/{owner}/{repo}/compare/{base}...{head}")
        return data.get("files") or []

    def get_file_contents(self, owner: str, repo: str, path: str, ref: str) -> str:
        data = self._request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{quote(path, safe='/')}",
            expected=(dict, list),
            params={"ref": ref},
        )
        if isinstance(data, list):
            raise GitHubAPIError(f"{path} is a directory, not a file")
        raw = data.get("content") or ""
        if data.get("encoding") != "base64":
            return raw
        return base64.b64decode(raw).decode("utf-8", errors="replace")

    def create_check_run(
        self, owner: str, repo: str, name: str, head_sha: str, status: str, title: str, summary: str
    ) -> int:
        payload = {
            "name": name,
            "head_sha": head_sha,
            "status": status,
            "started_at": _timestamp(),
            "output": {"title": title, "summary": summary},
        }
        data = self._request("POST", f"/repos/{owner}/{repo}/check-runs", json=payload)
        return int(data.get("id") or 0)

    def update_check_run(
        self,
        owner: str,
        repo: str,
        check_run_id: int,
        name: str,
        status: str,
        conclusion: str,
        title: str,
        summary: str,
        completed: bool = False,
    ) -> None:
        payload = {
            "name": name,
            "status": status,
            "conclusion": conclusion,
            "output": {"title": title, "summary": summary},
        }
        if completed:
            payload["completed_at"] = _timestamp()
        self._request("PATCH", f"/repos/{owner}/{repo}/check-runs/{check_run_id}", expected=None, json=payload)

    def list_open_issues(self, owner: str, repo: str, labels: list[str], per_page: int = 10) -> list[dict]:
        return self._request(
            "GET",
            f"/repos/{owner}/{repo}/issues",
            expected=list,
            params={"state": "open", "labels": ",".join(labels), "per_page": per_page},
        )

    def create_issue(self, owner: str, repo: str, title: str, body: str, labels: list[str]) -> int:
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues",
            json={"title": title, "body": body, "labels": labels},
        )
        return int(data.get("number") or 0)

    def get_repository(self, owner: str, repo: str) -> dict:
        return self._request("GET", f"/repos/{owner}/{repo}")


class GitHubApp:
    """Authenticates as the GitHub App and mints installation tokens."""

    def __init__(
        self,
        app_id: int,
        private_key: str,
        api_url: str = GITHUB_API,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.app_id = app_id
        self.private_key = private_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def create_jwt(self) -> str:
        now = int(time.time())
        payload = {"iat": now - 60, "exp": now + 9 * 60, "iss": str(self.app_id)}
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    def create_installation_token(self, installation_id: int) -> str:
        url = f"/app/installations/{installation_id}/access_tokens"
        try:
            app_jwt = self.create_jwt()
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise InstallationTokenError(f"failed to sign app JWT: {e}") from e
        headers = {**HEADERS, "Authorization": f"Bearer {app_jwt}"}
        try:
            with httpx.Client(base_url=self.api_url, timeout=self.timeout, transport=self.transport) as client:
                r = client.post(url, headers=headers)
        except httpx.HTTPError as e:
            raise InstallationTokenError(
                f"failed to create installation token for installation {installation_id}: {e}"
            ) from e
        if not r.is_success:
            logger.error("POST %s -> %s: %s", url, r.status_code, r.text[:800])
            raise InstallationTokenError(
                f"failed to create installation token for installation {installation_id}: GitHub {r.status_code}"
            )
        try:
            token = _decode("POST", url, r).get("token", "")
        except GitHubAPIError as e:
            raise InstallationTokenError(
                f"failed to create installation token for installation {installation_id}: {e}"
            ) from e
        if not token:
            raise InstallationTokenError(f"no token returned for installation {installation_id}")
        return token

    def installation_client(self, installation_id: int) -> InstallationClient:
        token = self.create_installation_token(installation_id)
        return InstallationClient(token, api_url=self.api_url, timeout=self.timeout, transport=self.transport)
