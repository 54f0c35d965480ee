"""Tokenization and light morphological expansion for the inverted index.

Indexing and querying share ``tokenize`` so a query term always meets the
same normalization as the stored text. ``expand_term`` maps a term to the
surface forms it should also match (``fix`` -> ``fixed``, ``fixes``,
``fixing`` and back); it is a suffix heuristic, not a stemmer.
"""

import re
from dataclasses import dataclass

from context_keeper.processor.vocabulary import STOPWORDS

_WORD = re.compile(r"\w+")
_VOWELS = frozenset("aeiouy")
_SUFFIXES = ("ing", "ies", "ied", "es", "ed", "s")


@dataclass(frozen=True)
class Token:
    term: str
    offset: int  # character offset of the word in the original text


def normalize_word(word: str) -> str | None:
    term = word.lower().replace("_", "")
    if len(term) < 2 or term.isdigit() or term in STOPWORDS:
        return None
    return term


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    for match in _WORD.finditer(text or ""):
        term = normalize_word(match.group(0))
        if term is not None:
            tokens.append(Token(term=term, offset=match.start()))
    return tokens


def query_terms(query: str) -> list[str]:
    """Distinct terms of a query in first-appearance order."""
    seen: list[str] = []
    for token in tokenize(query):
        if token.term not in seen:
            seen.append(token.term)
    return seen


def _stems(term: str) -> set[str]:
    stems = {term}
    for suffix in _SUFFIXES:
        if not term.endswith(suffix) or len(term) - len(suffix) < 2:
            continue
        base = term[: -len(suffix)]
        if suffix in ("ies", "ied"):
            stems.add(base + "y")
            continue
        stems.add(base)
        if suffix in ("ing", "ed"):
            stems.add(base + "e")
            if len(base) >= 3 and base[-1] == base[-2] and base[-1] not in _VOWELS:
                stems.add(base[:-1])
    return stems


def _forms(stem: str) -> set[str]:
    forms = {stem, stem + "s", stem + "es", stem + "ed", stem + "ing"}
    if stem.endswith("e"):
        forms.update({stem + "d", stem[:-1] + "ing"})
    if stem.endswith("y") and len(stem) > 2 and stem[-2] not in _VOWELS:
        forms.update({stem[:-1] + "ies", stem[:-1] + "ied"})
    if len(stem) >= 3 and stem[-1] not in _VOWELS and stem[-2] in _VOWELS and stem[-3] not in _VOWELS:
        forms.update({stem + stem[-1] + "ed", stem + stem[-1] + "ing"})
    return forms


def expand_term(term: str) -> set[str]:
    """The term plus its plausible inflections, all normalized like tokens."""
    variants: set[str] = set()
    for stem in _stems(term):
        variants.update(_forms(stem))
    return {v for v in variants if normalize_word(v) is not None} | {term}
