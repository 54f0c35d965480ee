"""Sensitive-data redaction.

The filter walks an ordered table of named detectors. Credential detectors
replace the secret value with ``REDACTION_MARKER`` while keeping the label
(``api_key=[REDACTED]``); PII detectors mask only part of the value so some
diagnostic signal survives (``***@example.com``, ``10.0.***.***``).

Table order (every detector runs, a string can be redacted by several):

    credentials: private_key, db_connection, connection_string, bearer_token,
                 jwt, api_key, aws_access_key, aws_secret, github_token,
                 slack_token, anthropic_key, openai_key, password, secret,
                 env_secret
    pii:         email, ssn, credit_card, phone, ip_address

Caller-supplied detectors run after the built-in table.

The filter never raises. A detector that fails is skipped for that input,
except credential detectors: if one of those cannot run, the whole field is
replaced with ``REDACTED_FIELD`` rather than risk leaking a secret.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from context_keeper.logging import get_logger

logger = get_logger("filter")

REDACTION_MARKER = "[REDACTED]"
REDACTED_FIELD = "[REDACTED: content withheld by security filter]"

# Keeps label/value detectors from re-matching a value that is already redacted
_GUARD = r"(?!\[REDACTED)"

Replacement = Callable[[re.Match[str]], str]


def _full(match: re.Match[str]) -> str:
    """Replace the ``value`` group (or the whole match) with the marker."""
    if "value" in match.re.groupindex and match.group("value") is not None:
        start = match.start("value") - match.start()
        end = match.end("value") - match.start()
        whole = match.group(0)
        return whole[:start] + REDACTION_MARKER + whole[end:]
    return REDACTION_MARKER


def _email(match: re.Match[str]) -> str:
    domain = match.group(0).rsplit("@", 1)[1]
    return f"***@{domain}"


def _ipv4(match: re.Match[str]) -> str:
    parts = match.group(0).split(".")
    return f"{parts[0]}.{parts[1]}.***.***"


def _phone(match: re.Match[str]) -> str:
    return match.group("prefix") + "***" + match.group("suffix")


def _keep_last_four(match: re.Match[str]) -> str:
    """Mask every digit except the final four, keeping separators."""
    value = match.group(0)
    total = sum(ch.isdigit() for ch in value)
    seen = 0
    masked: list[str] = []
    for ch in value:
        if ch.isdigit():
            seen += 1
            masked.append(ch if seen > total - 4 else "*")
        else:
            masked.append(ch)
    return "".join(masked)


STRATEGIES: dict[str, Replacement] = {
    "full": _full,
    "email": _email,
    "ipv4": _ipv4,
    "phone": _phone,
    "last4": _keep_last_four,
}


@dataclass(frozen=True)
class Detector:
    """A named pattern plus how to redact what it matches.

    Attributes:
        name: Unique detector name (used in stats)
        pattern: Compiled regex; credential patterns may define ``value``
            (and ``label``) groups so only the secret part is replaced
        strategy: Key into STRATEGIES or a callable taking the match
        high_risk: Credential class; failure redacts the whole field
    """

    name: str
    pattern: re.Pattern[str]
    strategy: str | Replacement = "full"
    high_risk: bool = True

    def apply(self, text: str) -> tuple[str, int]:
        """Redact every match in ``text``; returns (new text, match count)."""
        replacement = self.strategy if callable(self.strategy) else STRATEGIES[self.strategy]
        return self.pattern.subn(replacement, text)


def _credential(name: str, regex: str, flags: int = re.IGNORECASE) -> Detector:
    return Detector(name=name, pattern=re.compile(regex, flags), strategy="full", high_risk=True)


def _pii(name: str, regex: str, strategy: str, flags: int = 0) -> Detector:
    return Detector(name=name, pattern=re.compile(regex, flags), strategy=strategy, high_risk=False)


BUILTIN_DETECTORS: tuple[Detector, ...] = (
    _credential(
        "private_key",
        r"-----BEGIN (?:[A-Z0-9]+ )*PRIVATE KEY-----[\s\S]*?-----END (?:[A-Z0-9]+ )*PRIVATE KEY-----",
        flags=0,
    ),
    _credential(
        "db_connection",
        r"\b(?P<label>(?:mongodb(?:\+srv)?|postgres(?:ql)?|mysql|mariadb|mssql|redis|rediss|amqps?)://)"
        rf"{_GUARD}(?P<value>[^\s:/@'\"]+:[^\s@'\"]+@[^\s'\"]+)",
    ),
    _credential(
        "connection_string",
        rf"\b(?P<label>(?:password|pwd|user id|uid)\s*=\s*){_GUARD}(?P<value>[^;'\"\n]+)(?=;)",
    ),
    _credential(
        "bearer_token",
        r"\b(?P<label>(?:authorization\s*[:=]\s*(?:bearer\s+|token\s+|basic\s+)?|bearer\s+)[\"']?)"
        rf"{_GUARD}(?P<value>[A-Za-z0-9_\-.=+/]{{20,}})",
    ),
    _credential("jwt", r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+", flags=0),
    _credential(
        "api_key",
        r"\b(?P<label>[A-Za-z0-9_]*(?:api[_-]?key|apikey|api[_-]?secret|access[_-]?token|auth[_-]?token)"
        rf"[\"']?\s*[:=]\s*[\"']?){_GUARD}(?P<value>[A-Za-z0-9_\-.]{{16,}})",
    ),
    _credential("aws_access_key", r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b", flags=0),
    _credential(
        "aws_secret",
        r"\b(?P<label>aws[_-]?secret[_-]?access[_-]?key[\"']?\s*[:=]\s*[\"']?)"
        rf"{_GUARD}(?P<value>[A-Za-z0-9/+=]{{20,}})",
    ),
    _credential(
        "github_token",
        r"\b(?:(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9]{36,}|github_pat_[A-Za-z0-9_]{22,})",
        flags=0,
    ),
    _credential("slack_token", r"\bxox[abprs]-[A-Za-z0-9-]{10,}", flags=0),
    _credential("anthropic_key", r"\bsk-ant-[A-Za-z0-9_\-]{20,}", flags=0),
    _credential("openai_key", r"\bsk-(?:proj-)?[A-Za-z0-9_\-]{20,}", flags=0),
    _credential(
        "password",
        rf"\b(?P<label>(?:password|passwd|pwd)[\"']?\s*[:=]\s*[\"']?){_GUARD}(?P<value>[^\s'\",;]{{4,}})",
    ),
    _credential(
        "secret",
        r"\b(?P<label>[A-Za-z0-9_]*(?:secret|signing[_-]?key)[\"']?\s*[:=]\s*[\"']?)"
        rf"{_GUARD}(?P<value>[A-Za-z0-9_\-.+/=]{{8,}})",
    ),
    _credential(
        "env_secret",
        r"\b(?P<label>(?:export\s+)?[A-Z][A-Z0-9_]*_(?:KEY|TOKEN|SECRET|PASSWORD)\s*=\s*[\"']?)"
        rf"{_GUARD}(?P<value>[^\s'\"]+)",
        flags=0,
    ),
    _pii("email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "email"),
    _pii("ssn", r"\b\d{3}-\d{2}-\d{4}\b", "last4"),
    _pii("credit_card", r"\b(?:\d{4}[ -]?){3}\d{4}\b", "last4"),
    _pii(
        "phone",
        r"(?<![\w.+])(?P<prefix>(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-])(?P<middle>\d{3})(?P<suffix>[\s.-]\d{4})(?![\w.])",
        "phone",
    ),
    _pii(
        "ip_address",
        r"\b(?:(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\.){3}(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\b",
        "ipv4",
    ),
)


@dataclass
class FilterResult:
    """Redacted text plus what happened to it."""

    text: str
    count: int = 0
    detectors: dict[str, int] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)


class SecurityFilter:
    """Detects and redacts sensitive information from text.

    Built-in detectors are fixed; caller patterns live in a separate table
    and are applied after them.
    """

    def __init__(self, custom_patterns: dict[str, str] | None = None) -> None:
        self._builtin: tuple[Detector, ...] = BUILTIN_DETECTORS
        self._custom: dict[str, Detector] = {}
        self.redacted_count = 0
        self._by_detector: dict[str, int] = {}
        for name, regex in (custom_patterns or {}).items():
            self.add_pattern(name, regex)

    @property
    def detectors(self) -> list[Detector]:
        """All detectors in application order."""
        return [*self._builtin, *self._custom.values()]

    def add_pattern(
        self,
        name: str,
        pattern: str | re.Pattern[str],
        strategy: str | Replacement = "full",
        high_risk: bool = True,
    ) -> None:
        """Add or replace a caller-supplied detector.

        Raises:
            ValueError: If ``name`` belongs to a built-in detector, the regex
                does not compile, or ``strategy`` is unknown
        """
        if any(d.name == name for d in self._builtin):
            raise ValueError(f"Cannot override built-in detector: {name}")
        if isinstance(strategy, str) and strategy not in STRATEGIES:
            raise ValueError(f"Unknown redaction strategy: {strategy}")
        try:
            compiled = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
        except re.error as e:
            raise ValueError(f"Invalid pattern for detector {name}: {e}") from e
        self._custom[name] = Detector(name=name, pattern=compiled, strategy=strategy, high_risk=high_risk)

    def remove_pattern(self, name: str) -> bool:
        """Remove a caller-supplied detector. Built-ins cannot be removed.

        Returns:
            True if a detector was removed
        """
        return self._custom.pop(name, None) is not None

    def filter_text(self, value: Any) -> FilterResult:
        """Redact ``value`` and report what was done.

        Never raises. ``None`` becomes an empty string and other non-string
        values are redacted in their ``str()`` form.
        """
        if value is None:
            return FilterResult(text="")
        if isinstance(value, str):
            text = value
        else:
            try:
                text = str(value)
            except Exception:
                logger.warning("Unprintable value withheld: type=%s", type(value).__name__)
                return FilterResult(text=REDACTED_FIELD, count=1)
        result = FilterResult(text=text)

        for detector in self.detectors:
            try:
                redacted, count = detector.apply(result.text)
            except Exception:
                logger.warning("Detector failed: detector=%s", detector.name, exc_info=True)
                result.failed.append(detector.name)
                if detector.high_risk:
                    result.text = REDACTED_FIELD
                    result.count += 1
                    result.detectors[detector.name] = result.detectors.get(detector.name, 0) + 1
                    break
                continue

            if count:
                result.text = redacted
                result.count += count
                result.detectors[detector.name] = result.detectors.get(detector.name, 0) + count

        self.redacted_count += result.count
        for name, count in result.detectors.items():
            self._by_detector[name] = self._by_detector.get(name, 0) + count
        return result

    def redact(self, value: Any) -> str:
        """Redacted form of ``value``."""
        return self.filter_text(value).text

    def filter_object(self, obj: Any) -> Any:
        """Return a copy of ``obj`` with every string inside it redacted.

        Dicts, lists and tuples are walked recursively; keys and non-string
        scalars are left as they are.
        """
        if isinstance(obj, str):
            return self.redact(obj)
        if isinstance(obj, dict):
            return {key: self.filter_object(value) for key, value in obj.items()}
        if isinstance(obj, list):
            return [self.filter_object(item) for item in obj]
        if isinstance(obj, tuple):
            return tuple(self.filter_object(item) for item in obj)
        return obj

    def contains_sensitive_data(self, text: str) -> bool:
        """Whether any detector matches ``text``."""
        for detector in self.detectors:
            try:
                if detector.pattern.search(text):
                    return True
            except Exception:
                logger.warning("Detector failed: detector=%s", detector.name, exc_info=True)
                if detector.high_risk:
                    return True
        return False

    def stats(self) -> dict[str, Any]:
        """Audit counters since construction or the last reset."""
        return {
            "patterns_count": len(self.detectors),
            "patterns": [d.name for d in self.detectors],
            "redacted_count": self.redacted_count,
            "by_detector": dict(self._by_detector),
        }

    def reset_stats(self) -> None:
        self.redacted_count = 0
        self._by_detector.clear()


class RedactingLogFilter(logging.Filter):
    """Handler filter that redacts the formatted message of every record.

    Uses its own ``SecurityFilter`` unless one is given, so log redactions
    do not show up in the extraction audit counters.
    """

    def __init__(self, security_filter: SecurityFilter | None = None) -> None:
        super().__init__()
        self.security_filter = security_filter or SecurityFilter()
        self._active = False

    def filter(self, record: logging.LogRecord) -> bool:
        # A detector failure logs a warning; that record passes through unredacted
        if self._active:
            return True
        self._active = True
        try:
            record.msg = self.security_filter.redact(record.getMessage())
            record.args = None
        finally:
            self._active = False
        return True
