from dataclasses import dataclass, field

from pushscan.scanners.secrets import Finding

CHECK_RUN_NAME = "pushscan/secret-scan"

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
CONCLUSION_SUCCESS = "success"
CONCLUSION_FAILURE = "failure"

TITLE_IN_PROGRESS = "PushScan Secret Scan"
TITLE_ERROR = "PushScan Secret Scan - Error"
TITLE_CLEAN = "PushScan Secret Scan - Clean"
TITLE_SECRETS = "PushScan Secret Scan - Secrets Detected"

SUMMARY_IN_PROGRESS = "🔍 Scanning commit for secrets and sensitive information..."
SUMMARY_ERROR = "❌ Failed to scan commit for secrets. Please try again."
SUMMARY_CLEAN = "✅ No secrets or sensitive information detected in this commit."
SUMMARY_SECRETS = (
    "🚨 **{count} secret(s) detected** in this commit. Please review and remove sensitive information."
)
SUMMARY_TYPES_HEADER = "\n\n**Types of secrets found:**\n"

ISSUE_TITLE = "🚨 Security Alert: Secrets Detected in Repository"
ISSUE_LABEL = "security"

LEAK_PREFIX = "- "


@dataclass
class ScanResult:
    has_leaks: bool = False
    leak_count: int = 0
    leak_summary: list[str] = field(default_factory=list)


@dataclass
class CheckRunOutput:
    conclusion: str
    title: str
    summary: str


def aggregate(findings: list[Finding]) -> ScanResult:
    """Reduce findings to counts and rule identifiers only."""
    seen: dict[str, None] = {}
    for f in findings:
        if f.rule_id:
            seen.setdefault(f.rule_id, None)
    return ScanResult(
        has_leaks=len(findings) > 0,
        leak_count=len(findings),
        leak_summary=[LEAK_PREFIX + rule_id for rule_id in seen],
    )


def check_run_output(result: ScanResult) -> CheckRunOutput:
    if result.leak_count == 0:
        return CheckRunOutput(CONCLUSION_SUCCESS, TITLE_CLEAN, SUMMARY_CLEAN)
    summary = SUMMARY_SECRETS.format(count=result.leak_count)
    if result.leak_summary:
        summary += SUMMARY_TYPES_HEADER + "\n".join(result.leak_summary)
    return CheckRunOutput(CONCLUSION_FAILURE, TITLE_SECRETS, summary)


def error_output() -> CheckRunOutput:
    return CheckRunOutput(CONCLUSION_FAILURE, TITLE_ERROR, SUMMARY_ERROR)


def build_report(findings: list[Finding]) -> str:
    """Render the issue body for a full repository scan.

    Only rule identifiers, file paths and line numbers are included.
    """
    groups: dict[str, int] = {}
    for f in findings:
        rule_id = f.rule_id or "unknown"
        groups[rule_id] = groups.get(rule_id, 0) + 1

    lines = [
        "## 🚨 Security Alert: Secrets Detected",
        "",
        "PushScan has detected potential secrets in your repository during a full scan. "
        "Please review these findings and take appropriate action.",
        "",
        f"**Total findings:** {len(findings)}",
        "",
        "### Detected Secret Types",
        "",
    ]
    for rule_id, count in groups.items():
        lines.append(f"- **{rule_id}**: {count} occurrence(s)")

    lines += ["", "### File Locations", ""]
    for f in findings:
        lines.append(f"- `{f.file or 'unknown file'}` (line {f.start_line})")

    lines += [
        "",
        "### Recommended Actions",
        "",
        "1. **Immediately rotate** any exposed credentials",
        "2. **Remove secrets** from the repository history",
        "3. **Use environment variables** or secure secret management",
        "4. **Add secrets to .gitignore** to prevent future commits",
        "5. **Review commit history** for other potential exposures",
        "",
        "### Important Notes",
        "",
        "- This issue was created automatically by PushScan",
        "- Secrets may be visible in commit history even after removal",
        "- Consider using tools like `git filter-repo` or `BFG Repo-Cleaner` for history cleanup",
        "",
    ]
    return "\n".join(lines)
