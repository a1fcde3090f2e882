"""Token helpers shared by catalog ranking and intent resolution."""

from __future__ import annotations

import re

STOPWORDS = frozenset({
    "a", "an", "the", "for", "of", "to", "in", "on", "at", "with", "by", "and", "or",
    "then", "their", "his", "her", "its", "my", "our", "your", "this", "that", "these",
    "those", "please", "me", "us", "is", "are", "be", "as", "from", "about", "all",
    "any", "some", "it", "them", "they", "i", "we", "you", "can", "could", "would",
})

# Verbs that say "do something" without saying what. They still rank, but do
# not count towards match confidence.
GENERIC_VERBS = frozenset({
    "get", "show", "check", "review", "list", "fetch", "display", "find", "retrieve",
    "view", "see", "give", "tell", "look", "pull", "bring", "provide",
})

_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_RE = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_RE = re.compile(r"[a-z0-9]+")


def split_identifier(name: str) -> list[str]:
    """Split a camelCase / snake_case / kebab-case name into lowercase words.

    >>> split_identifier("getPatientHistory")
    ['get', 'patient', 'history']
    """
    spaced = _ACRONYM_RE.sub(r"\1 \2", name)
    spaced = _CAMEL_RE.sub(r"\1 \2", spaced)
    return _WORD_RE.findall(spaced.lower())


def stem(word: str) -> str:
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def words(text: str) -> list[str]:
    """Lowercase words of text, unstemmed, stopwords kept."""
    return _WORD_RE.findall(text.lower())


def tokenize(text: str) -> list[str]:
    """Lowercase, stemmed content tokens of text, stopwords removed, order kept."""
    return [stem(w) for w in words(text) if w not in STOPWORDS]


def name_tokens(name: str) -> list[str]:
    return [stem(w) for w in split_identifier(name) if w not in STOPWORDS]


def compact(text: str) -> str:
    """Lowercase text with everything but letters and digits removed."""
    return re.sub(r"[^a-z0-9]", "", text.lower())


def humanize(name: str) -> str:
    """``insuranceProvider`` -> ``insurance provider``."""
    return " ".join(split_identifier(name))
