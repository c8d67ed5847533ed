"""
Optimistic View Cache.

Callers read the catalog through this projection: the last snapshot, a layer
of confirmed edits not yet reflected in a snapshot, and a layer of pending
edits applied before the platform confirmed them. Each pending edit is held
under a token until the caller confirms or rolls it back.
"""
import logging
import threading
import uuid
from typing import Optional

from .exceptions import EditInFlight
from .schemas import (
    AddDependent,
    CatalogEntry,
    DemoteFromSource,
    Item,
    PromoteToSource,
    RemoveDependent,
    SetRatio,
    Snapshot,
)

logger = logging.getLogger(__name__)


class OptimisticViewCache:
    def __init__(self, snapshot: Optional[Snapshot] = None):
        self._lock = threading.Lock()
        self._snapshot: Optional[Snapshot] = None
        self._base: dict[str, Item] = {}
        self._confirmed: dict[str, Item] = {}
        self._pending: dict[str, Item] = {}
        # token -> ids of the items its edit touched
        self._tokens: dict[str, list[str]] = {}
        if snapshot is not None:
            self.seed(snapshot)

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    def seed(self, snapshot: Snapshot) -> None:
        """Replaces the base view. Confirmed edits are now part of the snapshot."""
        with self._lock:
            if self._snapshot is not None and snapshot.version <= self._snapshot.version:
                return
            self._snapshot = snapshot
            self._base = {item.id: item for item in snapshot.items()}
            self._confirmed.clear()
            logger.debug(f"View cache seeded with snapshot v{snapshot.version}.")

    # --- Reads ---

    def _current(self, item_id: str) -> Optional[Item]:
        return self._pending.get(item_id) or self._confirmed.get(item_id) or self._base.get(item_id)

    def item(self, item_id: str) -> Optional[Item]:
        with self._lock:
            return self._current(item_id)

    def items(self) -> list[Item]:
        with self._lock:
            ids = list(self._base) + [i for i in {**self._confirmed, **self._pending} if i not in self._base]
            return [self._current(item_id) for item_id in ids]

    def items_by_id(self) -> dict[str, Item]:
        return {item.id: item for item in self.items()}

    def entries(self) -> list[CatalogEntry]:
        with self._lock:
            if self._snapshot is None:
                return []
            return [
                entry.model_copy(
                    update={"items": [self._current(item.id) or item for item in entry.items]}
                )
                for entry in self._snapshot.entries
            ]

    def is_pending(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._pending

    # --- Edits ---

    def apply(self, intent) -> str:
        """
        Projects an edit onto the view and returns the token that confirms or
        rolls it back. Raises EditInFlight if any touched item already has an
        unconfirmed edit.
        """
        with self._lock:
            updates = self._project(intent)
            for item_id in updates:
                if item_id in self._pending:
                    raise EditInFlight(item_id)

            token = uuid.uuid4().hex
            self._tokens[token] = list(updates)
            self._pending.update(updates)
            return token

    def confirm(self, token: str) -> None:
        with self._lock:
            touched = self._tokens.pop(token, None)
            if touched is None:
                raise KeyError(f"Unknown edit token: {token}")
            for item_id in touched:
                self._confirmed[item_id] = self._pending.pop(item_id)

    def rollback(self, token: str) -> None:
        with self._lock:
            touched = self._tokens.pop(token, None)
            if touched is None:
                raise KeyError(f"Unknown edit token: {token}")
            for item_id in touched:
                self._pending.pop(item_id, None)
            logger.info(f"↩️ Rolled back local edit on {sorted(touched)}.")

    def _item_or_stub(self, item_id: str) -> Item:
        # Items outside the snapshot (not exported yet) still get a projection.
        return self._current(item_id) or Item(id=item_id)

    def _project(self, intent) -> dict[str, Item]:
        if isinstance(intent, AddDependent):
            source = self._item_or_stub(intent.source_id)
            candidate = self._item_or_stub(intent.candidate_id)
            members = list(source.dependent_ids)
            if intent.candidate_id not in members:
                members.append(intent.candidate_id)
            return {
                source.id: source.model_copy(update={"dependent_ids": members}),
                candidate.id: candidate.model_copy(
                    update={"source_ref": intent.source_id, "ratio": intent.ratio}
                ),
            }
        if isinstance(intent, RemoveDependent):
            source = self._item_or_stub(intent.source_id)
            candidate = self._item_or_stub(intent.candidate_id)
            return {
                source.id: source.model_copy(
                    update={"dependent_ids": [d for d in source.dependent_ids if d != intent.candidate_id]}
                ),
                candidate.id: candidate.model_copy(update={"source_ref": None, "ratio": 1}),
            }
        if isinstance(intent, SetRatio):
            dependent = self._item_or_stub(intent.dependent_id)
            return {dependent.id: dependent.model_copy(update={"ratio": intent.ratio})}
        if isinstance(intent, PromoteToSource):
            item = self._item_or_stub(intent.item_id)
            return {item.id: item.model_copy(update={"is_source": True})}
        if isinstance(intent, DemoteFromSource):
            item = self._item_or_stub(intent.item_id)
            return {item.id: item.model_copy(update={"is_source": False, "dependent_ids": []})}
        raise TypeError(f"Unsupported edit intent: {type(intent).__name__}")
