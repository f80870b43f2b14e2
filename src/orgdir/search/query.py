"""Query validation and FTS5 expression building."""

import re
import unicodedata
from dataclasses import dataclass

from orgdir.errors import QueryValidationError

# Lowercase words FTS5 would otherwise read as terms rather than operators
_LOWERCASE_OPERATORS: frozenset[str] = frozenset({"and", "or", "not"})

_ALLOWED_CONTROL = frozenset("\t\n\r")

_WHITESPACE = re.compile(r"\s+")

MAX_WILDCARD_RATIO = 0.5


@dataclass(frozen=True)
class QueryCheck:
    """Outcome of validating raw search input.

    Attributes:
        valid: Whether the input may be searched.
        empty: Input was empty or whitespace-only (valid, no results).
        reason: Machine-readable rejection reason when invalid.
        message: Human-readable rejection message when invalid.
    """

    valid: bool
    empty: bool = False
    reason: str | None = None
    message: str | None = None

    def raise_for_invalid(self) -> None:
        """Raise QueryValidationError when the input was rejected."""
        if not self.valid:
            raise QueryValidationError(
                self.message or "Invalid search query", self.reason or "invalid"
            )


def _reject(reason: str, message: str) -> QueryCheck:
    return QueryCheck(valid=False, reason=reason, message=message)


def validate_query(raw: str, max_length: int | None = None) -> QueryCheck:
    """Check raw search input before it reaches the text index.

    Rejection is never fatal; callers turn it into an empty result with a
    warning.

    Args:
        raw: Query text as typed by the user.
        max_length: Longest accepted query, None for no limit.

    Returns:
        Validation outcome.
    """
    query = raw.strip()
    if not query:
        return QueryCheck(valid=True, empty=True)

    if max_length is not None and len(query) > max_length:
        return _reject(
            "query_too_long",
            f"Search query is too long (max {max_length} characters)",
        )

    if any(
        unicodedata.category(ch) == "Cc" and ch not in _ALLOWED_CONTROL
        for ch in query
    ):
        return _reject(
            "control_characters",
            "Search query contains invalid control characters",
        )

    if query.count('"') % 2:
        return _reject(
            "unbalanced_double_quotes", "Unbalanced double quotes in search query"
        )

    if query.count("'") % 2:
        return _reject(
            "unbalanced_single_quotes", "Unbalanced single quotes in search query"
        )

    if query.count("*") / len(query) > MAX_WILDCARD_RATIO:
        return _reject("excessive_wildcards", "Too many wildcards in search query")

    for token in query.split():
        if token in _LOWERCASE_OPERATORS:
            return _reject(
                "lowercase_operator",
                f"FTS5 operators must be uppercase (AND, OR, NOT); found '{token}'",
            )

    return QueryCheck(valid=True)


def _quote(token: str) -> str:
    return '"' + token.replace('"', '""') + '"'


def tokenize(raw: str) -> list[str]:
    """Split a query on whitespace.

    Args:
        raw: Query text.

    Returns:
        Non-empty tokens in input order.
    """
    return raw.split()


def build_prefix_query(raw: str) -> str | None:
    """Build the primary prefix-matching expression.

    Every token is quoted so FTS5 syntax characters are taken literally,
    and gets a trailing prefix marker so partial words match. Tokens are
    joined with implicit AND.

    Args:
        raw: Validated query text.

    Returns:
        FTS5 MATCH expression, or None when there are no tokens.
    """
    tokens = tokenize(raw)
    if not tokens:
        return None
    return " ".join(_quote(t.replace("'", "''")) + "*" for t in tokens)


def generate_trigrams(raw: str) -> list[str]:
    """Generate the overlapping three-character substrings of a query.

    Args:
        raw: Unescaped query text.

    Returns:
        Distinct trigrams in first-seen order; empty for queries shorter
        than three characters.
    """
    text = _WHITESPACE.sub(" ", raw.strip()).lower()
    seen: dict[str, None] = {}
    for i in range(len(text) - 2):
        seen.setdefault(text[i : i + 3], None)
    return list(seen)


def build_trigram_query(trigrams: list[str]) -> str | None:
    """Build a disjunctive expression where any trigram may match.

    Args:
        trigrams: Trigrams from generate_trigrams().

    Returns:
        FTS5 MATCH expression, or None when there are no trigrams.
    """
    if not trigrams:
        return None
    return " OR ".join(_quote(t) for t in trigrams)


def normalize_needle(raw: str) -> str:
    """Collapse whitespace and case-fold a query for substring matching.

    Args:
        raw: Query text.

    Returns:
        Needle for containment checks.
    """
    return _WHITESPACE.sub(" ", raw.strip()).casefold()
