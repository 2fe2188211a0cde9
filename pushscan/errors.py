class PushScanError(Exception):
    """Base exception for the service."""


class ConfigError(PushScanError):
    pass


class WebhookError(PushScanError):
    pass


class SignatureError(WebhookError):
    pass


class PayloadError(WebhookError):
    pass


class GitHubAPIError(PushScanError):
    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class InstallationTokenError(PushScanError):
    pass


class CommitDiffError(PushScanError):
    pass


class CheckRunError(PushScanError):
    pass


class GitError(PushScanError):
    pass


class CloneError(GitError):
    pass


class RepositoryScanError(PushScanError):
    pass


class ScanTimeoutError(PushScanError):
    """Raised when the full repository scan exceeds its deadline."""

    def __init__(self, message: str = "full repository scan timed out"):
        super().__init__(message)


class IssueError(PushScanError):
    pass
