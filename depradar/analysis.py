"""Text analysis for the CPE index.

Two analyzers share one tokenizer:

* the field analyzer, used for indexed vendor/product values, and
* the search analyzer, used for query terms, which additionally drops stop
  words and concatenates adjacent words so ``spring framework`` also finds
  ``springframework``.
"""

import re

_SPLIT_RX = re.compile(r"[^A-Za-z0-9.]+")
_VERSION_START_RX = re.compile(r"^\d")

STOP_WORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "but",
        "by",
        "for",
        "if",
        "in",
        "into",
        "is",
        "it",
        "no",
        "not",
        "of",
        "on",
        "or",
        "such",
        "that",
        "the",
        "their",
        "then",
        "there",
        "these",
        "they",
        "this",
        "to",
        "was",
        "will",
        "with",
        "inc",
        "com",
        "org",
        "net",
        "www",
        "ltd",
        "llc",
    }
)


def tokenize(text: str) -> list[str]:
    """Split on anything but letters, digits and dots; case is preserved."""
    words = []
    for raw in _SPLIT_RX.split(text or ""):
        word = raw.strip(".")
        if word:
            words.append(word)
    return words


def version_tokens(token: str) -> list[str]:
    """Expand a dotted version token.

    Leading numeric parts are emitted as growing prefixes, later parts one
    by one, then the whole token::

        >>> version_tokens("3.0.0.RELEASE")
        ['3', '3.0', '3.0.0', 'RELEASE', '3.0.0.RELEASE']
    """
    parts = [p for p in token.split(".") if p]
    out: list[str] = []
    prefix: list[str] = []
    numeric = True
    for part in parts:
        if numeric and part.isdigit():
            prefix.append(part)
            out.append(".".join(prefix))
        else:
            numeric = False
            out.append(part)
    if token not in out:
        out.append(token)
    return out


def expand_token(token: str) -> list[str]:
    """Expand one tokenizer word into the terms indexed for it."""
    if "." not in token:
        return [token]
    if _VERSION_START_RX.match(token):
        return version_tokens(token)
    parts = [p for p in token.split(".") if p]
    return parts + [token]


def field_words(text: str) -> list[str]:
    """Lower-cased tokenizer words, one per position."""
    return [w.lower() for w in tokenize(text)]


def analyze_field(text: str) -> list[tuple[int, str]]:
    """Analyze an indexed value into ``(position, term)`` pairs.

    Every term expanded from one word shares that word's position.
    """
    terms: list[tuple[int, str]] = []
    for position, word in enumerate(tokenize(text)):
        for term in expand_token(word):
            terms.append((position, term.lower()))
    return terms


def analyze_search(text: str) -> list[str]:
    """Analyze query text into search terms (stop words removed, pairs joined).

    Example::

        >>> analyze_search("Spring Framework")
        ['spring', 'springframework', 'framework']
    """
    words = [w.lower() for w in tokenize(text)]
    words = [w for w in words if w not in STOP_WORDS]
    terms: list[str] = []
    for i, word in enumerate(words):
        for term in expand_token(word):
            if term not in terms:
                terms.append(term)
        if i + 1 < len(words):
            nxt = words[i + 1]
            if "." not in word and "." not in nxt:
                pair = word + nxt
                if pair not in terms:
                    terms.append(pair)
    return terms
