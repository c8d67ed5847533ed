import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Union

from . import limits, settings, utils
from .attributes import AttributeStore, ShopifyAttributeStore
from .client import PlatformClient
from .details import fetch_item_details
from .exceptions import EditInFlight
from .exporter import BulkExporter, ShopifyBulkExporter
from .reconciler import RelationshipReconciler
from .schemas import (
    AddDependent,
    CandidateStatus,
    DemoteFromSource,
    Failed,
    Item,
    ItemDetail,
    LimitStatus,
    Ok,
    PartialFailure,
    PromoteToSource,
    ReconcileReport,
    Rejected,
    RejectionReason,
    RemoveDependent,
    RepairStrategy,
    SetRatio,
    SnapshotView,
)
from .snapshots import SnapshotStateMachine
from .view_cache import OptimisticViewCache

logger = logging.getLogger(__name__)

Result = Union[Ok, Rejected, PartialFailure, Failed]


def find_owner(items: Iterable[Item], candidate_id: str) -> Optional[Item]:
    """The source whose membership list names the candidate, if any."""
    for item in items:
        if item.is_source and candidate_id in item.dependent_ids:
            return item
    return None


class StockLinkService:
    """
    Caller-facing entry point: snapshot reads, relationship edits, limit checks.
    Every edit is projected onto the view cache first, then written through the
    reconciler, then confirmed or rolled back depending on the outcome.
    """

    def __init__(
        self,
        store: AttributeStore,
        exporter: BulkExporter,
        limit: Optional[int] = settings.SYNCED_ITEMS_LIMIT,
        freshness_window: timedelta = timedelta(minutes=settings.FRESHNESS_WINDOW_MINUTES),
        clock: Callable[[], datetime] = utils.utcnow,
        detail_concurrency: int = settings.DETAIL_FETCH_CONCURRENCY,
    ):
        self.store = store
        self.limit = limit
        self.detail_concurrency = detail_concurrency
        self.reconciler = RelationshipReconciler(store)
        self.snapshots = SnapshotStateMachine(exporter, freshness_window=freshness_window, clock=clock)
        self.cache = OptimisticViewCache()

    @classmethod
    def from_settings(cls) -> "StockLinkService":
        client = PlatformClient()
        return cls(ShopifyAttributeStore(client), ShopifyBulkExporter(client))

    # --- Reads ---

    def get_snapshot(self) -> SnapshotView:
        view = self.snapshots.get_snapshot()
        if view.snapshot is not None:
            self.cache.seed(view.snapshot)
        return view

    def check_limit(self) -> LimitStatus:
        return limits.check_limit(limits.count(self.cache.items()), self.limit)

    def verify_candidate(self, candidate_id: str) -> CandidateStatus:
        """Live check of the candidate plus a snapshot scan for a source listing it."""
        state = self.store.read_relationship(candidate_id)
        owner = find_owner(self.cache.items(), candidate_id)
        return CandidateStatus(
            item_id=candidate_id,
            is_source=state.is_source,
            is_dependent=bool(state.source_ref),
            source_id=state.source_ref,
            listed_by=owner.id if owner else None,
            listed_by_title=owner.parent_title if owner else "",
        )

    def source_details(self, source_id: str) -> dict[str, ItemDetail]:
        """Display data for a source and each of its dependents, fetched in parallel."""
        source = self.cache.item(source_id)
        dependent_ids = list(source.dependent_ids) if source else []
        if source is None:
            dependent_ids = self.store.read_relationship(source_id).dependent_ids
        return fetch_item_details(
            self.store, [source_id, *dependent_ids], max_workers=self.detail_concurrency
        )

    # --- Edits ---

    def promote_to_source(self, item_id: str) -> Result:
        return self._execute(
            PromoteToSource(item_id=item_id),
            lambda: self.reconciler.promote_to_source(item_id),
        )

    def demote_from_source(self, item_id: str) -> Result:
        return self._execute(
            DemoteFromSource(item_id=item_id),
            lambda: self.reconciler.demote_from_source(item_id),
        )

    def add_dependent(self, source_id: str, candidate_id: str, ratio: Any = 1) -> Result:
        parsed = utils.parse_ratio(ratio)
        if parsed is None:
            return Rejected(
                reason=RejectionReason.INVALID_RATIO,
                message=f"Ratio must be a positive integer, got {ratio!r}.",
            )

        if self.limit is not None:
            items = self.cache.items_by_id()
            projected = limits.count(items.values()) + limits.new_participants(
                items, source_id, candidate_id
            )
            status = limits.check_limit(projected, self.limit)
            if status.over_limit:
                return Rejected(
                    reason=RejectionReason.OVER_LIMIT,
                    message=f"Linking would bring synced items to {projected}, plan allows {self.limit}.",
                )

        return self._execute(
            AddDependent(source_id=source_id, candidate_id=candidate_id, ratio=parsed),
            lambda: self.reconciler.add_dependent(source_id, candidate_id, parsed),
        )

    def remove_dependent(self, source_id: str, candidate_id: str) -> Result:
        return self._execute(
            RemoveDependent(source_id=source_id, candidate_id=candidate_id),
            lambda: self.reconciler.remove_dependent(source_id, candidate_id),
        )

    def set_ratio(self, dependent_id: str, ratio: Any) -> Result:
        parsed = utils.parse_ratio(ratio)
        if parsed is None:
            return Rejected(
                reason=RejectionReason.INVALID_RATIO,
                message=f"Ratio must be a positive integer, got {ratio!r}.",
            )
        return self._execute(
            SetRatio(dependent_id=dependent_id, ratio=parsed),
            lambda: self.reconciler.set_ratio(dependent_id, parsed),
        )

    # --- Drift ---

    def reconcile(self, item_id: str, source_id: Optional[str] = None) -> ReconcileReport:
        return self.reconciler.reconcile(item_id, source_id)

    def repair(self, report: ReconcileReport, strategy: RepairStrategy) -> Result:
        return self.reconciler.repair(report, strategy)

    def _execute(self, intent, operation: Callable[[], Result]) -> Result:
        try:
            token = self.cache.apply(intent)
        except EditInFlight as e:
            return Rejected(reason=RejectionReason.EDIT_IN_FLIGHT, message=e.message)

        try:
            result = operation()
        except Exception:
            self.cache.rollback(token)
            raise

        if isinstance(result, Ok):
            self.cache.confirm(token)
        else:
            # Partial writes are left for reconcile/repair; the view only shows confirmed state.
            self.cache.rollback(token)
        return result
