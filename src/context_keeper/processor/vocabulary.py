"""Heuristic vocabularies used by extraction and scoring.

All keyword tables live in one frozen, versioned ``ExtractionVocabulary`` so
that a category can be tested on its own or swapped wholesale (for example a
different locale) by passing another instance to the extractor and scorer.
Phrases are matched case-insensitively on word boundaries.
"""

import re
from dataclasses import dataclass, field
from functools import cached_property

STOPWORDS: frozenset[str] = frozenset(
    """
    a about above after again against all also am an and any are aren as at be
    because been before being below between both but by can cannot could couldn
    did didn do does doesn doing don down during each either else etc even ever
    every few for from further get gets got had hadn has hasn have haven having he
    her here hers herself him himself his how however i if in into is isn it its
    itself just let lets like ll may me might more most much must mustn my myself
    need no nor not now of off on once one only or other ought our ours ourselves
    out over own re same shall shan she should shouldn so some such than that the
    their theirs them themselves then there these they this those through thus to
    too under until up upon us ve very via was wasn we were weren what when where
    whether which while who whom whose why will with within without won would
    wouldn yet you your yours yourself yourselves
    """.split()
)


def _phrase_regex(phrases: tuple[str, ...]) -> re.Pattern[str]:
    """Compile phrases into one case-insensitive word-boundary alternation."""
    if not phrases:
        return re.compile(r"(?!x)x")
    ordered = sorted(phrases, key=len, reverse=True)
    alternation = "|".join(re.escape(p).replace(r"\ ", r"\s+") for p in ordered)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)


@dataclass(frozen=True)
class ExtractionVocabulary:
    """Versioned keyword tables for the extraction heuristics."""

    version: str
    # Lexical cues that a user turn states a problem worth tracking
    problem_terms: tuple[str, ...]
    question_phrases: tuple[str, ...]
    request_verbs: tuple[str, ...]
    # Assistant admissions that an attempted solution did not work
    failure_admissions: tuple[str, ...]
    error_resolution_phrases: tuple[str, ...]
    architecture_phrases: tuple[str, ...]
    # Regexes whose match is the decision statement itself
    decision_patterns: tuple[str, ...]
    rationale_markers: tuple[str, ...]
    high_impact_terms: tuple[str, ...]
    low_impact_terms: tuple[str, ...]
    tag_terms: tuple[str, ...]
    trivial_commands: tuple[str, ...]
    stopwords: frozenset[str] = field(default=STOPWORDS)

    @cached_property
    def problem_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.problem_terms)

    @cached_property
    def question_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.question_phrases)

    @cached_property
    def request_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.request_verbs)

    @cached_property
    def failure_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.failure_admissions)

    @cached_property
    def resolution_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.error_resolution_phrases)

    @cached_property
    def architecture_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.architecture_phrases)

    @cached_property
    def decision_regexes(self) -> tuple[re.Pattern[str], ...]:
        return tuple(re.compile(p, re.IGNORECASE) for p in self.decision_patterns)

    @cached_property
    def rationale_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.rationale_markers)

    @cached_property
    def high_impact_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.high_impact_terms)

    @cached_property
    def low_impact_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.low_impact_terms)

    @cached_property
    def tag_regex(self) -> re.Pattern[str]:
        return _phrase_regex(self.tag_terms)

    def is_question(self, text: str) -> bool:
        """Literal question: the trimmed text ends with a question mark."""
        return text.rstrip().endswith("?")

    def is_request(self, text: str) -> bool:
        return bool(self.request_regex.search(text) or self.question_regex.search(text))

    def is_problem_statement(self, text: str) -> bool:
        return bool(self.problem_regex.search(text))

    def is_problem_indicator(self, text: str) -> bool:
        """Whether a user turn should open a Problem."""
        if not text or not text.strip():
            return False
        return "?" in text or self.is_request(text) or self.is_problem_statement(text)

    def admits_failure(self, text: str) -> bool:
        return bool(self.failure_regex.search(text))

    def mentions_resolution(self, text: str) -> bool:
        return bool(self.resolution_regex.search(text))

    def mentions_architecture(self, text: str) -> bool:
        return bool(self.architecture_regex.search(text))

    def is_trivial_command(self, command: str) -> bool:
        words = command.strip().split()
        return not words or words[0] in self.trivial_commands


DEFAULT_VOCABULARY = ExtractionVocabulary(
    version="1.0",
    problem_terms=(
        "error", "errors", "bug", "bugs", "debug", "debugging", "issue", "issues",
        "problem", "problems", "broken", "crash", "crashes", "crashing", "exception",
        "fail", "fails", "failed", "failing", "failure", "wrong", "not working",
        "doesn't work", "does not work", "stuck", "confused", "unclear", "traceback",
        "stack trace", "undefined", "null pointer", "regression", "slow", "leak",
        "vulnerability", "timeout",
    ),
    question_phrases=(
        "how do i", "how can i", "how to", "how should i", "how would i",
        "what is the best way", "is there a way", "why does", "why is",
    ),
    request_verbs=(
        "implement", "create", "build", "add", "fix", "refactor", "optimize",
        "migrate", "deploy", "write", "test", "set up", "setup", "configure",
        "install", "document", "explain", "help", "solve", "update", "remove",
        "rename", "investigate",
    ),
    failure_admissions=(
        "didn't work", "did not work", "doesn't work", "does not work",
        "still failing", "still fails", "still broken", "still not working",
        "couldn't fix", "could not fix", "unable to fix", "unable to resolve",
        "wasn't able to", "was not able to", "i couldn't", "i could not",
        "that failed", "this failed", "no luck", "not resolved",
    ),
    error_resolution_phrases=(
        "fixed", "resolved", "the fix", "root cause", "the issue was",
        "the problem was", "the error was", "caused by", "to fix this",
        "this fixes", "now passes", "tests pass", "works now", "solved",
    ),
    architecture_phrases=(
        "architecture", "architectural", "design pattern", "approach", "strategy",
        "decided", "decision", "trade-off", "tradeoff", "we should", "better to",
        "recommend", "going with", "instead of", "layer", "module boundary",
        "separation of concerns", "schema", "interface",
    ),
    decision_patterns=(
        r"\bwe should (?:\w+[^.!?\n]*)",
        r"\bit(?:'s| is) better to (?:\w+[^.!?\n]*)",
        r"\bbetter to (?:\w+[^.!?\n]*)",
        r"\bi recommend (?:\w+[^.!?\n]*)",
        r"\bthe approach is to (?:\w+[^.!?\n]*)",
        r"\b(?:we |i )?decided to (?:\w+[^.!?\n]*)",
        r"\b(?:we're |we are |i'm |i am )?going with (?:\w+[^.!?\n]*)",
        r"\bopted (?:for|to) (?:\w+[^.!?\n]*)",
        r"\bchoosing (?:\w+[^.!?\n]*)",
        r"\blet's use (?:\w+[^.!?\n]*)",
    ),
    rationale_markers=("because", "since", "due to", "so that", "in order to"),
    high_impact_terms=(
        "architecture", "database", "api", "security", "framework", "schema",
        "migration", "breaking", "authentication", "infrastructure", "protocol",
        "critical", "production",
    ),
    low_impact_terms=("typo", "cosmetic", "formatting", "whitespace", "minor", "comment", "rename"),
    tag_terms=(
        "react", "vue", "angular", "typescript", "javascript", "node", "python",
        "django", "flask", "fastapi", "rust", "go", "java", "api", "rest",
        "graphql", "database", "sql", "sqlite", "postgres", "mysql", "redis",
        "mongodb", "css", "html", "json", "yaml", "docker", "kubernetes", "aws",
        "gcp", "azure", "git", "auth", "oauth", "jwt", "testing", "pytest",
        "jest", "ci", "webpack", "vite", "linux", "bash", "regex", "cache",
        "async", "performance", "security", "logging",
    ),
    trivial_commands=("ls", "pwd", "cd", "echo", "cat", "clear", "whoami", "which", "true"),
)
