from typing import Iterable, Optional, Union

from .schemas import Item, LimitStatus, Snapshot


def count(catalog: Union[Snapshot, Iterable[Item]]) -> int:
    """
    Number of items taking part in a relationship: sources with at least one
    dependent, and items carrying a back-reference.
    """
    items = catalog.items() if isinstance(catalog, Snapshot) else catalog
    return sum(1 for item in items if item.participates)


def check_limit(count: int, limit: Optional[int]) -> LimitStatus:
    if limit is None or count <= limit:
        return LimitStatus(kind="within_limit", count=count, limit=limit)
    return LimitStatus(kind="over_limit", count=count, limit=limit, excess=count - limit)


def new_participants(items_by_id: dict[str, Item], source_id: str, candidate_id: str) -> int:
    """How many more items would count toward the limit once the link exists."""
    added = 0
    source = items_by_id.get(source_id)
    if source is None or not source.participates:
        added += 1
    candidate = items_by_id.get(candidate_id)
    if candidate is None or not candidate.participates:
        added += 1
    return added
