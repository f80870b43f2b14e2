"""Escalation ladder: prefix match, then trigram, then substring scan."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

import structlog

from orgdir.errors import IndexQueryError
from orgdir.search.engine import IndexMatches, RankedRow, TextIndexEngine
from orgdir.search.executor import RankedSearchExecutor
from orgdir.search.query import (
    build_prefix_query,
    build_trigram_query,
    generate_trigrams,
    normalize_needle,
)
from orgdir.search.schemas import EntityType

logger = structlog.get_logger()


class SearchTier(str, Enum):
    """Matching strategy that produced a result set."""

    PREFIX = "prefix"
    TRIGRAM = "trigram"
    SUBSTRING = "substring"


TIER_WARNINGS: dict[SearchTier, str] = {
    SearchTier.TRIGRAM: "No exact matches found; showing fuzzy matches instead",
    SearchTier.SUBSTRING: "No exact or fuzzy matches found; showing partial text matches instead",
}

ALL_TIERS_FAILED = "Search is temporarily unavailable; no results could be retrieved"


@dataclass
class TierOutcome:
    """Result of running the ladder once for a request.

    Attributes:
        tier: Tier whose rows are returned, None when nothing matched.
        rows: All distinct matches of that tier, ordered by relevance.
        used_fallback: A tier beyond the primary one produced the rows.
        warnings: Human-readable notes on escalation and failures.
        failed: Tiers whose index query raised.
    """

    tier: SearchTier | None
    rows: list[RankedRow] = field(default_factory=list)
    used_fallback: bool = False
    warnings: list[str] = field(default_factory=list)
    failed: list[SearchTier] = field(default_factory=list)


class DegradationController:
    """Applies the escalation ladder once per request, across all types.

    Each tier runs only when every earlier tier produced zero matches in
    total. A tier whose index query fails counts as zero and escalation
    continues.
    """

    def __init__(
        self,
        executor: RankedSearchExecutor,
        enable_trigram: bool = True,
        enable_substring: bool = True,
    ) -> None:
        """Initialize controller.

        Args:
            executor: Per-type search and merge.
            enable_trigram: Allow escalation to the trigram tier.
            enable_substring: Allow escalation to the substring tier.
        """
        self._executor = executor
        self._enable_trigram = enable_trigram
        self._enable_substring = enable_substring

    def run(
        self,
        engine: TextIndexEngine,
        org_id: str,
        raw_query: str,
        entity_types: Sequence[EntityType],
        starred_only: bool = False,
    ) -> TierOutcome:
        """Run tiers until one produces matches.

        Args:
            engine: Text-index engine bound to the request's connection.
            org_id: Organization being searched.
            raw_query: Validated, unescaped query text.
            entity_types: Types requested by the caller.
            starred_only: Restrict to starred people.

        Returns:
            Outcome describing the tier that answered.
        """
        outcome = TierOutcome(tier=None)
        attempted = 0

        for tier in self._tiers():
            expression = self._expression(tier, raw_query)
            if expression is None:
                continue

            attempted += 1
            try:
                rows = self._executor.run(
                    entity_types,
                    lambda entity_type: self._match(
                        engine, tier, entity_type, org_id, expression, starred_only
                    ),
                )
            except IndexQueryError as e:
                logger.warning(
                    "search_tier_failed", tier=tier.value, index=e.index, org_id=org_id
                )
                outcome.failed.append(tier)
                continue

            if rows:
                outcome.tier = tier
                outcome.rows = rows
                if tier is not SearchTier.PREFIX:
                    outcome.used_fallback = True
                    outcome.warnings.append(TIER_WARNINGS[tier])
                    logger.info(
                        "search_fallback_used",
                        tier=tier.value,
                        org_id=org_id,
                        total=len(rows),
                    )
                return outcome

        if attempted and len(outcome.failed) == attempted:
            outcome.warnings.append(ALL_TIERS_FAILED)
        return outcome

    def _tiers(self) -> list[SearchTier]:
        tiers = [SearchTier.PREFIX]
        if self._enable_trigram:
            tiers.append(SearchTier.TRIGRAM)
        if self._enable_substring:
            tiers.append(SearchTier.SUBSTRING)
        return tiers

    @staticmethod
    def _expression(tier: SearchTier, raw_query: str) -> str | None:
        if tier is SearchTier.PREFIX:
            return build_prefix_query(raw_query)
        if tier is SearchTier.TRIGRAM:
            return build_trigram_query(generate_trigrams(raw_query))
        needle = normalize_needle(raw_query)
        return needle or None

    @staticmethod
    def _match(
        engine: TextIndexEngine,
        tier: SearchTier,
        entity_type: EntityType,
        org_id: str,
        expression: str,
        starred_only: bool,
    ) -> IndexMatches:
        if tier is SearchTier.PREFIX:
            return engine.match_prefixed(entity_type, org_id, expression, starred_only)
        if tier is SearchTier.TRIGRAM:
            return engine.match_trigram(entity_type, org_id, expression, starred_only)
        return engine.match_substring(entity_type, org_id, expression, starred_only)
