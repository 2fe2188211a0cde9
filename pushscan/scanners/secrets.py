import bisect
import math
import re
from dataclasses import dataclass


@dataclass
class Finding:
    rule_id: str
    description: str = ""
    file: str = ""
    start_line: int = 0
    end_line: int = 0


@dataclass(frozen=True)
class Rule:
    rule_id: str
    description: str
    pattern: re.Pattern
    # index of the group holding the secret; 0 means the whole match
    secret_group: int = 0
    min_entropy: float = 0.0


SECRET_RULES = (
    Rule("aws-access-token", "AWS Access Key",
         re.compile(r"\b((?:A3T[A-Z0-9]|AKIA|ASIA|ABIA|ACCA)[A-Z2-7]{16})\b"), 1),
    Rule("github-pat", "GitHub Personal Access Token", re.compile(r"\bghp_[0-9a-zA-Z]{36}\b")),
    Rule("github-fine-grained-pat", "GitHub Fine-Grained Personal Access Token",
         re.compile(r"\bgithub_pat_\w{82}\b")),
    Rule("github-oauth", "GitHub OAuth Access Token", re.compile(r"\bgho_[0-9a-zA-Z]{36}\b")),
    Rule("github-app-token", "GitHub App Token", re.compile(r"\b(?:ghu|ghs)_[0-9a-zA-Z]{36}\b")),
    Rule("github-refresh-token", "GitHub Refresh Token", re.compile(r"\bghr_[0-9a-zA-Z]{36}\b")),
    Rule("gitlab-pat", "GitLab Personal Access Token", re.compile(r"\bglpat-[0-9a-zA-Z_-]{20}\b")),
    Rule("slack-bot-token", "Slack Bot Token",
         re.compile(r"\bxoxb-[0-9]{10,13}-[0-9]{10,13}[a-zA-Z0-9-]*")),
    Rule("slack-user-token", "Slack User Token",
         re.compile(r"\bxox[pe](?:-[0-9]{10,13}){3}-[a-zA-Z0-9-]{28,34}")),
    Rule("slack-webhook-url", "Slack Webhook",
         re.compile(r"(?:https?://)?hooks\.slack\.com/(?:services|workflows)/[A-Za-z0-9+/]{43,46}")),
    Rule("stripe-access-token", "Stripe Access Token",
         re.compile(r"\b(?:sk|rk)_(?:test|live|prod)_[a-zA-Z0-9]{10,99}\b")),
    Rule("openai-api-key", "OpenAI API Key",
         re.compile(r"\bsk-(?:proj-|svcacct-|admin-)?[A-Za-z0-9_-]{20,74}T3BlbkFJ[A-Za-z0-9_-]{20,74}\b")),
    Rule("anthropic-api-key", "Anthropic API Key", re.compile(r"\bsk-ant-api03-[a-zA-Z0-9_-]{93}AA\b")),
    Rule("gcp-api-key", "Google API Key", re.compile(r"\bAIza[0-9A-Za-z_-]{35}\b")),
    Rule("sendgrid-api-token", "SendGrid API Token", re.compile(r"\bSG\.[a-zA-Z0-9=_.-]{66}\b")),
    Rule("twilio-api-key", "Twilio API Key", re.compile(r"\bSK[0-9a-fA-F]{32}\b")),
    Rule("npm-access-token", "npm Access Token", re.compile(r"\bnpm_[a-zA-Z0-9]{36}\b")),
    Rule("pypi-upload-token", "PyPI Upload Token", re.compile(r"\bpypi-AgEIcHlwaS5vcmc[A-Za-z0-9_-]{50,1000}")),
    Rule("private-key", "Private Key",
         re.compile(
             r"-----BEGIN[ A-Z0-9_-]{0,100}PRIVATE KEY(?: BLOCK)?-----"
             r"[\s\S]{64,}?"
             r"-----END[ A-Z0-9_-]{0,100}PRIVATE KEY(?: BLOCK)?-----"
         )),
    Rule("jwt", "JSON Web Token",
         re.compile(r"\bey[a-zA-Z0-9]{17,}\.ey[a-zA-Z0-9/_-]{17,}\.(?:[a-zA-Z0-9/_-]{10,}={0,2})?")),
)

GENERIC_RULE = Rule(
    "generic-api-key",
    "Generic API Key",
    re.compile(
        r"(?:access|auth|api|credential|creds|key|passwd|password|secret|token)[\w.-]{0,20}"
        r"['\"]?\s{0,3}(?::=|=>|=|:)\s{0,3}['\"]?([\w./+=-]{10,150})",
        re.IGNORECASE,
    ),
    secret_group=1,
    min_entropy=3.5,
)

PLACEHOLDERS = {
    "your_key_here", "xxx", "changeme", "example", "placeholder",
    "secret", "password", "replace_me", "your_value", "env_value",
}


def shannon_entropy(value: str) -> float:
    if not value:
        return 0.0
    counts: dict[str, int] = {}
    for ch in value:
        counts[ch] = counts.get(ch, 0) + 1
    length = len(value)
    return -sum((n / length) * math.log2(n / length) for n in counts.values())


def _is_placeholder(val: str) -> bool:
    v = val.lower().strip()
    if v in PLACEHOLDERS or v.startswith("your_") or v.startswith("<") or v.endswith(">"):
        return True
    return len(set(v)) <= 2 or "example" in v


class _LineIndex:
    def __init__(self, text: str):
        self._breaks = [i for i, ch in enumerate(text) if ch == "\n"]

    def line_of(self, offset: int) -> int:
        return bisect.bisect_left(self._breaks, offset) + 1


class SecretDetector:
    """Runs the built-in rule set over in-memory text.

    Findings carry the rule identifier and line span only; the matched
    value never leaves this class.
    """

    def __init__(self, rules=SECRET_RULES, generic_rule: Rule | None = GENERIC_RULE):
        self.rules = tuple(rules)
        self.generic_rule = generic_rule

    def detect(self, text: str) -> list[Finding]:
        if not text:
            return []
        lines = _LineIndex(text)
        hits: list[tuple[int, Finding]] = []
        claimed: list[tuple[int, int]] = []

        for rule in self.rules:
            for m in rule.pattern.finditer(text):
                start, end = m.span(rule.secret_group)
                if rule.min_entropy and shannon_entropy(m.group(rule.secret_group)) < rule.min_entropy:
                    continue
                claimed.append((start, end))
                hits.append((start, self._finding(rule, lines, m.start(), m.end())))

        generic = self.generic_rule
        if generic is not None:
            for m in generic.pattern.finditer(text):
                value = m.group(generic.secret_group)
                start, end = m.span(generic.secret_group)
                if any(s < end and start < e for s, e in claimed):
                    continue
                if _is_placeholder(value) or shannon_entropy(value) < generic.min_entropy:
                    continue
                hits.append((start, self._finding(generic, lines, m.start(), m.end())))

        hits.sort(key=lambda h: h[0])
        return [f for _, f in hits]

    @staticmethod
    def _finding(rule: Rule, lines: _LineIndex, start: int, end: int) -> Finding:
        return Finding(
            rule_id=rule.rule_id,
            description=rule.description,
            start_line=lines.line_of(start),
            end_line=lines.line_of(max(start, end - 1)),
        )


_default_detector: SecretDetector | None = None


def default_detector() -> SecretDetector:
    global _default_detector
    if _default_detector is None:
        _default_detector = SecretDetector()
    return _default_detector
