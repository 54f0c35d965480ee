"""Text helpers shared by extraction: truncation, keywords and tags."""

import re
from collections import Counter

from context_keeper.processor.vocabulary import DEFAULT_VOCABULARY, ExtractionVocabulary

TRUNCATION_MARKER = "... [truncated]"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_WHITESPACE = re.compile(r"\s")


def truncate_text(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cap ``text`` at ``limit`` characters without cutting a word in half.

    The result, marker included, is never longer than ``limit``. When the
    kept prefix contains no whitespace at all the cut falls mid-token, which
    is the only way to honour the limit.

    Args:
        text: Text to cap
        limit: Maximum length of the returned string
        marker: Appended when anything was removed

    Returns:
        ``text`` unchanged when it fits, otherwise a prefix ending on a word
        boundary followed by ``marker``
    """
    if len(text) <= limit:
        return text
    if limit <= len(marker):
        return marker[:limit]

    budget = limit - len(marker)
    cut = text[:budget]
    if not _WHITESPACE.match(text[budget]):
        boundary = max(cut.rfind(" "), cut.rfind("\n"), cut.rfind("\t"))
        if boundary > 0:
            cut = cut[:boundary]
    return cut.rstrip() + marker


def is_truncated(text: str, marker: str = TRUNCATION_MARKER) -> bool:
    return text.endswith(marker)


def extract_keywords(
    text: str,
    limit: int = 10,
    stopwords: frozenset[str] | None = None,
) -> list[str]:
    """Rank the most characteristic words of ``text``.

    Lower-cases, strips non-alphanumerics, drops stop words, single characters
    and pure numbers, then orders by frequency and, among equals, by length
    (longer words are more specific). Remaining ties keep first-appearance
    order.
    """
    if stopwords is None:
        stopwords = DEFAULT_VOCABULARY.stopwords

    words = _NON_ALNUM.sub(" ", text.lower()).split()
    counts: Counter[str] = Counter()
    first_seen: dict[str, int] = {}
    for position, word in enumerate(words):
        if len(word) < 2 or word.isdigit() or word in stopwords:
            continue
        counts[word] += 1
        first_seen.setdefault(word, position)

    ranked = sorted(counts, key=lambda w: (-counts[w], -len(w), first_seen[w]))
    return ranked[:limit]


def extract_tags(
    text: str,
    limit: int = 5,
    vocabulary: ExtractionVocabulary = DEFAULT_VOCABULARY,
) -> list[str]:
    """Technology/domain tags for ``text``.

    Known vocabulary terms win, in order of first appearance; when none are
    present the top keywords stand in so that every problem carries some tags.
    """
    tags: list[str] = []
    for match in vocabulary.tag_regex.finditer(text):
        tag = match.group(0).lower()
        if tag not in tags:
            tags.append(tag)
        if len(tags) >= limit:
            return tags

    if tags:
        return tags
    return extract_keywords(text, limit=min(limit, 3), stopwords=vocabulary.stopwords)
