"""Query model and parser for the CPE index.

The accepted syntax is a subset of the Lucene classic query syntax::

    product:(struts2\\-core^2 "struts 2"^3) AND vendor:(apache)

* ``field:term`` and ``field:(...)`` groups; bare terms use the default field
* ``"quoted phrases"``
* ``^boost`` after a term, phrase or group
* ``+`` (required), ``-`` / ``NOT`` (prohibited), ``AND``, ``OR``
* backslash escapes

Wildcards, fuzzy, range and regular-expression queries are not supported
and are reported as syntax errors.
"""

from dataclasses import dataclass
from enum import Enum

from .analysis import analyze_search, field_words
from .errors import QuerySyntaxError

FIELDS = frozenset({"vendor", "product"})
DEFAULT_FIELD = "product"

# characters escaped by escape_query_text
_RESERVED = set('\\+-!():^[]"{}~*?|&/')
# characters that end an unescaped term
_TERM_BREAK = set(' \t\r\n():^"')
_UNSUPPORTED = set("[]{}~*?/!")
_KEYWORDS = {"AND", "OR", "NOT"}


class Occur(str, Enum):
    MUST = "MUST"
    SHOULD = "SHOULD"
    MUST_NOT = "MUST_NOT"


@dataclass(frozen=True)
class TermQuery:
    field: str
    term: str
    boost: float = 1.0


@dataclass(frozen=True)
class PhraseQuery:
    field: str
    terms: tuple[str, ...]
    boost: float = 1.0


@dataclass(frozen=True)
class BooleanClause:
    query: "Query"
    occur: Occur = Occur.SHOULD


@dataclass(frozen=True)
class BooleanQuery:
    clauses: tuple[BooleanClause, ...]
    boost: float = 1.0

    def terms(self) -> list[TermQuery]:
        """Every term query nested in this query, depth first."""
        found: list[TermQuery] = []
        for clause in self.clauses:
            q = clause.query
            if isinstance(q, TermQuery):
                found.append(q)
            elif isinstance(q, BooleanQuery):
                found.extend(q.terms())
        return found


Query = TermQuery | PhraseQuery | BooleanQuery


def escape_query_text(text: str) -> str:
    """Backslash-escape every reserved character, hyphen included.

    Example::

        >>> escape_query_text("struts2-core")
        'struts2\\\\-core'
    """
    return "".join("\\" + ch if ch in _RESERVED else ch for ch in text)


class _Parser:
    def __init__(self, text: str, default_field: str):
        self.text = text
        self.pos = 0
        self.default_field = default_field

    def error(self, message: str, position: int | None = None) -> QuerySyntaxError:
        where = self.pos if position is None else position
        return QuerySyntaxError(f"{message} at position {where} in query {self.text!r}", self.text, where)

    # ── Lexing helpers ──────────────────────────────────────────────────────

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def at_keyword(self, word: str) -> bool:
        end = self.pos + len(word)
        if self.text[self.pos:end] != word:
            return False
        return end >= len(self.text) or self.text[end].isspace() or self.text[end] in "()"

    def read_term(self) -> str:
        chars: list[str] = []
        start = self.pos
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch == "\\":
                if self.pos + 1 >= len(self.text):
                    raise self.error("dangling escape character", self.pos)
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            if ch in _TERM_BREAK:
                break
            if ch in _UNSUPPORTED:
                raise self.error(f"unsupported syntax '{ch}'", self.pos)
            chars.append(ch)
            self.pos += 1
        if not chars:
            raise self.error("expected a term", start)
        return "".join(chars)

    def read_phrase(self) -> str:
        start = self.pos
        self.pos += 1  # opening quote
        chars: list[str] = []
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch == "\\" and self.pos + 1 < len(self.text):
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            if ch == '"':
                self.pos += 1
                return "".join(chars)
            chars.append(ch)
            self.pos += 1
        raise self.error("unterminated quoted phrase", start)

    def read_boost(self) -> float | None:
        if self.peek() != "^":
            return None
        start = self.pos
        self.pos += 1
        digits = []
        while self.pos < len(self.text) and (self.text[self.pos].isdigit() or self.text[self.pos] == "."):
            digits.append(self.text[self.pos])
            self.pos += 1
        try:
            boost = float("".join(digits))
        except ValueError:
            raise self.error("invalid boost", start) from None
        if boost <= 0:
            raise self.error("boost must be positive", start)
        return boost

    # ── Grammar ─────────────────────────────────────────────────────────────

    def parse(self) -> "Query":
        query = self.parse_clauses(self.default_field, nested=False)
        if query is None:
            raise self.error("query has no searchable terms", 0)
        return query

    def parse_clauses(self, field: str, nested: bool) -> "Query | None":
        clauses: list[BooleanClause] = []
        saw_any = False
        conj: str | None = None
        while True:
            self.skip_ws()
            ch = self.peek()
            if ch == "":
                if nested:
                    raise self.error("unbalanced parentheses: missing ')'")
                break
            if ch == ")":
                if not nested:
                    raise self.error("unbalanced parentheses: unexpected ')'")
                break
            if self.at_keyword("AND") or self.at_keyword("OR"):
                word = "AND" if self.at_keyword("AND") else "OR"
                if not saw_any or conj is not None:
                    raise self.error(f"dangling operator {word}")
                conj = word
                self.pos += len(word)
                continue

            occur = Occur.SHOULD
            op_pos = self.pos
            if ch in "+-":
                occur = Occur.MUST if ch == "+" else Occur.MUST_NOT
                self.pos += 1
                if self.peek() == "" or self.peek().isspace():
                    raise self.error(f"dangling operator {ch}", op_pos)
            elif self.at_keyword("NOT"):
                occur = Occur.MUST_NOT
                self.pos += 3
                self.skip_ws()
                if self.peek() in ("", ")"):
                    raise self.error("dangling operator NOT", op_pos)

            query = self.parse_clause(field)
            saw_any = True
            if conj == "AND":
                if clauses and clauses[-1].occur == Occur.SHOULD:
                    clauses[-1] = BooleanClause(clauses[-1].query, Occur.MUST)
                if occur == Occur.SHOULD:
                    occur = Occur.MUST
            conj = None
            if query is not None:
                clauses.append(BooleanClause(query, occur))

        if conj is not None:
            raise self.error(f"dangling operator {conj}")
        if not clauses:
            return None
        if len(clauses) == 1 and clauses[0].occur == Occur.SHOULD and not nested:
            return clauses[0].query
        return BooleanQuery(tuple(clauses))

    def parse_clause(self, field: str) -> "Query | None":
        self.skip_ws()
        start = self.pos
        ch = self.peek()
        if ch == "":
            raise self.error("expected a term", start)

        if ch not in '("':
            word = self.read_term()
            if self.peek() == ":":
                if word not in FIELDS:
                    raise self.error(f"unknown field '{word}'", start)
                self.pos += 1
                field = word
                ch = self.peek()
                if ch == "" or ch.isspace():
                    raise self.error(f"missing value for field '{word}'", self.pos)
                if ch not in '("':
                    word = self.read_term()
                    return self.boosted(self.term_query(field, word), self.read_boost())
            else:
                return self.boosted(self.term_query(field, word), self.read_boost())

        if self.peek() == "(":
            self.pos += 1
            inner = self.parse_clauses(field, nested=True)
            self.pos += 1  # closing paren, checked by parse_clauses
            return self.boosted(inner, self.read_boost())
        phrase = self.read_phrase()
        return self.boosted(self.phrase_query(field, phrase), self.read_boost())

    # ── Query construction ──────────────────────────────────────────────────

    @staticmethod
    def term_query(field: str, text: str) -> "Query | None":
        terms = analyze_search(text)
        if not terms:
            return None
        if len(terms) == 1:
            return TermQuery(field, terms[0])
        return BooleanQuery(tuple(BooleanClause(TermQuery(field, t)) for t in terms))

    @staticmethod
    def phrase_query(field: str, text: str) -> "Query | None":
        words = field_words(text)
        if not words:
            return None
        if len(words) == 1:
            return _Parser.term_query(field, words[0])
        return PhraseQuery(field, tuple(words))

    @staticmethod
    def boosted(query: "Query | None", boost: float | None) -> "Query | None":
        if query is None or boost is None:
            return query
        if isinstance(query, TermQuery):
            return TermQuery(query.field, query.term, boost)
        if isinstance(query, PhraseQuery):
            return PhraseQuery(query.field, query.terms, boost)
        return BooleanQuery(query.clauses, boost)


def parse_query(text: str, default_field: str = DEFAULT_FIELD) -> Query:
    """Parse a query string.

    Args:
        text: Query in the supported Lucene classic subset.
        default_field: Field for terms without a ``field:`` prefix.

    Returns:
        The parsed query.

    Raises:
        QuerySyntaxError: on an empty query, unbalanced parentheses or
            quotes, an unknown field, an invalid boost or a dangling
            operator.
    """
    if default_field not in FIELDS:
        raise QuerySyntaxError(f"unknown default field '{default_field}'", text or "")
    if not text or not text.strip():
        raise QuerySyntaxError("empty query", text or "", 0)
    return _Parser(text, default_field).parse()


def is_keyword(word: str) -> bool:
    """Whether a word would be read as an operator when left unquoted."""
    return word in _KEYWORDS
