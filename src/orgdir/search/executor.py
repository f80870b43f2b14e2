"""Ranked search execution: per-type sub-queries merged by entity identity."""

from collections.abc import Callable, Iterable

from orgdir.search.engine import IndexMatches, RankedRow
from orgdir.search.schemas import EntityType

_TYPE_ORDER: dict[EntityType, int] = {
    EntityType.DEPARTMENT: 0,
    EntityType.PERSON: 1,
}


def sort_key(row: RankedRow) -> tuple[float, int, str, str]:
    """Total order over ranked rows: score, then type, name, and id."""
    return (row.score, _TYPE_ORDER[row.entity_type], row.name.casefold(), row.entity_id)


def merge_matches(matches: IndexMatches) -> list[RankedRow]:
    """Merge content and custom-field rows of one entity type.

    An entity present in both keeps the lower score. Its excerpt comes from
    the content index, falling back to the custom-field excerpt only when
    the content row has none.

    Args:
        matches: Sub-query results for one type.

    Returns:
        One row per distinct entity, sorted by relevance.
    """
    merged: dict[str, RankedRow] = {}
    # Content rows go first so their excerpts win.
    for row in [*matches.content, *matches.custom]:
        existing = merged.get(row.entity_id)
        if existing is None:
            merged[row.entity_id] = RankedRow(
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                score=row.score,
                excerpt=row.excerpt,
                fields=row.fields,
            )
            continue
        existing.score = min(existing.score, row.score)
        if not existing.excerpt:
            existing.excerpt = row.excerpt

    return sorted(merged.values(), key=sort_key)


MatchFn = Callable[[EntityType], IndexMatches]


class RankedSearchExecutor:
    """Runs a match strategy for each requested type and fuses the results."""

    def run(
        self,
        entity_types: Iterable[EntityType],
        match: MatchFn,
    ) -> list[RankedRow]:
        """Execute one tier across the requested entity types.

        Args:
            entity_types: Types to search.
            match: Strategy returning both sub-results for a type; it raises
                IndexQueryError when the underlying index query fails.

        Returns:
            Every distinct match, ordered by relevance. The length of the
            list is the tier's total; pagination is applied by the caller.
        """
        rows: list[RankedRow] = []
        for entity_type in entity_types:
            rows.extend(merge_matches(match(entity_type)))
        return sorted(rows, key=sort_key)


def paginate(rows: list[RankedRow], limit: int, offset: int) -> list[RankedRow]:
    """Slice one page out of an ordered result list."""
    return rows[offset : offset + limit]
