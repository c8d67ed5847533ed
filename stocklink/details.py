import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from . import settings
from .attributes import AttributeStore
from .exceptions import StoreError
from .schemas import ItemDetail

logger = logging.getLogger(__name__)


def _fetch_one(store: AttributeStore, item_id: str) -> ItemDetail:
    try:
        return ItemDetail(item_id=item_id, item=store.get_item(item_id))
    except StoreError as e:
        logger.warning(f"⚠️ Detail fetch failed for {item_id}: {e}")
        return ItemDetail(item_id=item_id, degraded=True, error=str(e))
    except Exception as e:
        # A malformed node must not take the rest of the batch down with it.
        logger.error(f"❌ Unexpected error fetching {item_id}: {type(e).__name__}: {e}")
        return ItemDetail(item_id=item_id, degraded=True, error=f"{type(e).__name__}: {e}")


def fetch_item_details(
    store: AttributeStore,
    item_ids: list[str],
    max_workers: int = settings.DETAIL_FETCH_CONCURRENCY,
) -> dict[str, ItemDetail]:
    """
    Fetches display data for many items in parallel, at most `max_workers`
    requests at a time. A failed item comes back degraded instead of failing
    the batch. Results keep the order of `item_ids`.
    """
    unique_ids = list(dict.fromkeys(item_ids))
    if not unique_ids:
        return {}

    results: dict[str, ItemDetail] = {}
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = {pool.submit(_fetch_one, store, item_id): item_id for item_id in unique_ids}
        for future in as_completed(futures):
            item_id = futures[future]
            results[item_id] = future.result()

    degraded = sum(1 for detail in results.values() if detail.degraded)
    if degraded:
        logger.warning(f"⚠️ {degraded} of {len(unique_ids)} item details are degraded.")
    return {item_id: results[item_id] for item_id in unique_ids}
