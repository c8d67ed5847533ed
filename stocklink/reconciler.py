"""
Relationship Reconciler.

Source/dependent links live in four per-item attributes that the platform
writes independently. Every multi-item change is therefore an ordered
sequence of single-item writes:

    add:     (1) dependent's back-reference + ratio   (2) source's membership list
    remove:  (1) source's membership list             (2) dependent's back-reference
             (3) dependent's ratio

The membership list is written last on add and cleared first on remove, so the
only drift a reader can ever observe is "back-reference without membership".
A failure after the first write lands is reported as a PartialFailure naming the
item left dangling; nothing here retries or compensates on its own.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Optional, Union

from . import utils
from .attributes import (
    DEPENDENT_IDS,
    IS_SOURCE,
    RATIO,
    SOURCE_REF,
    AttributeStore,
    dependents_write,
    ratio_write,
    source_flag_write,
    source_ref_write,
)
from .exceptions import StoreError
from .schemas import (
    AttributeWrite,
    Failed,
    Ok,
    PartialFailure,
    ReconcileReport,
    ReconcileStatus,
    Rejected,
    RejectionReason,
    RepairStrategy,
    WriteStep,
)

logger = logging.getLogger(__name__)

Result = Union[Ok, Rejected, PartialFailure, Failed]
PlannedWrite = tuple[WriteStep, list[AttributeWrite]]


class RelationshipReconciler:
    def __init__(self, store: AttributeStore):
        self.store = store
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # --- Locking ---

    def _lock_for(self, item_id: str) -> threading.Lock:
        with self._registry_lock:
            if item_id not in self._locks:
                self._locks[item_id] = threading.Lock()
            return self._locks[item_id]

    @contextmanager
    def _locked(self, *item_ids: str):
        """Serializes operations touching the same items within this process."""
        # Sorted acquisition keeps two overlapping operations from deadlocking.
        locks = [self._lock_for(item_id) for item_id in sorted(set(item_ids))]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    # --- Write execution ---

    def _run_steps(self, operation: str, steps: list[PlannedWrite], orphan_id: str) -> Result:
        landed: list[WriteStep] = []
        for index, (step, writes) in enumerate(steps):
            try:
                self.store.set_attributes(step.item_id, writes)
            except StoreError as e:
                not_landed = [s for s, _ in steps[index:]]
                if not landed:
                    logger.error(f"❌ {operation}: {step.description} failed, nothing written: {e}")
                    return Failed(message=f"{step.description} failed: {e}")
                logger.error(
                    f"❌ {operation}: {step.description} failed after "
                    f"{len(landed)} write(s) landed; {orphan_id} is left dangling: {e}"
                )
                return PartialFailure(
                    landed=landed,
                    not_landed=not_landed,
                    orphaned_item_id=orphan_id,
                    message=f"{step.description} failed: {e}",
                )
            landed.append(step)
        return Ok()

    @staticmethod
    def _clear_link_steps(item_id: str) -> list[PlannedWrite]:
        # Clearing the back-reference is a set and dropping the ratio is a delete;
        # the platform takes them as separate calls, so each is its own step.
        return [
            (
                WriteStep(
                    item_id=item_id, attributes=[SOURCE_REF.key], description="clear back-reference"
                ),
                [source_ref_write(None)],
            ),
            (
                WriteStep(item_id=item_id, attributes=[RATIO.key], description="drop ratio"),
                [ratio_write(None)],
            ),
        ]

    @staticmethod
    def _reject(reason: RejectionReason, message: str) -> Rejected:
        logger.info(f"Rejected ({reason.value}): {message}")
        return Rejected(reason=reason, message=message)

    # --- Operations ---

    def promote_to_source(self, item_id: str) -> Result:
        with self._locked(item_id):
            try:
                state = self.store.read_relationship(item_id)
            except StoreError as e:
                return Failed(message=f"Could not read {item_id}: {e}")
            if state.source_ref:
                return self._reject(
                    RejectionReason.ALREADY_DEPENDENT,
                    f"{item_id} is a dependent of {state.source_ref}.",
                )
            if state.is_source:
                return Ok(message=f"{item_id} is already a source.")

            step = WriteStep(item_id=item_id, attributes=[IS_SOURCE.key], description="set source flag")
            result = self._run_steps("promote_to_source", [(step, [source_flag_write(True)])], item_id)
            if isinstance(result, Ok):
                logger.info(f"✅ {item_id} promoted to source.")
            return result

    def demote_from_source(self, item_id: str) -> Result:
        with self._locked(item_id):
            try:
                state = self.store.read_relationship(item_id)
            except StoreError as e:
                return Failed(message=f"Could not read {item_id}: {e}")
            if state.dependent_ids:
                return self._reject(
                    RejectionReason.HAS_DEPENDENTS,
                    f"{item_id} still has {len(state.dependent_ids)} dependent(s); remove them first.",
                )
            if not state.is_source:
                return Ok(message=f"{item_id} is not a source.")

            step = WriteStep(item_id=item_id, attributes=[IS_SOURCE.key], description="clear source flag")
            result = self._run_steps("demote_from_source", [(step, [source_flag_write(False)])], item_id)
            if isinstance(result, Ok):
                logger.info(f"✅ {item_id} demoted from source.")
            return result

    def add_dependent(self, source_id: str, candidate_id: str, ratio: int = 1) -> Result:
        if not utils.is_positive_int(ratio):
            return self._reject(RejectionReason.INVALID_RATIO, f"Ratio must be a positive integer, got {ratio!r}.")
        if source_id == candidate_id:
            return self._reject(RejectionReason.SELF_REFERENCE, f"{source_id} cannot depend on itself.")

        with self._locked(source_id, candidate_id):
            try:
                source = self.store.read_relationship(source_id)
                candidate = self.store.read_relationship(candidate_id)
            except StoreError as e:
                return Failed(message=f"Could not read relationship state: {e}")

            if not source.is_source:
                return self._reject(RejectionReason.NOT_A_SOURCE, f"{source_id} is not a source.")
            if candidate.is_source:
                return self._reject(
                    RejectionReason.CANDIDATE_IS_SOURCE, f"{candidate_id} is itself a source."
                )
            if candidate.source_ref and candidate.source_ref != source_id:
                return self._reject(
                    RejectionReason.ALREADY_ASSIGNED,
                    f"{candidate_id} already depends on {candidate.source_ref}.",
                )

            steps: list[PlannedWrite] = [
                (
                    WriteStep(
                        item_id=candidate_id,
                        attributes=[SOURCE_REF.key, RATIO.key],
                        description="set back-reference and ratio",
                    ),
                    [source_ref_write(source_id), ratio_write(ratio)],
                )
            ]
            if candidate_id not in source.dependent_ids:
                steps.append(
                    (
                        WriteStep(
                            item_id=source_id,
                            attributes=[DEPENDENT_IDS.key],
                            description="append to membership list",
                        ),
                        [dependents_write(source.dependent_ids + [candidate_id])],
                    )
                )

            result = self._run_steps("add_dependent", steps, candidate_id)
            if isinstance(result, Ok):
                logger.info(f"✅ {candidate_id} now depends on {source_id} (ratio {ratio}).")
            return result

    def remove_dependent(self, source_id: str, candidate_id: str) -> Result:
        with self._locked(source_id, candidate_id):
            try:
                source = self.store.read_relationship(source_id)
                candidate = self.store.read_relationship(candidate_id)
            except StoreError as e:
                return Failed(message=f"Could not read relationship state: {e}")

            if candidate.source_ref and candidate.source_ref != source_id:
                return self._reject(
                    RejectionReason.NOT_ASSIGNED,
                    f"{candidate_id} depends on {candidate.source_ref}, not {source_id}.",
                )

            steps: list[PlannedWrite] = []
            if candidate_id in source.dependent_ids:
                steps.append(
                    (
                        WriteStep(
                            item_id=source_id,
                            attributes=[DEPENDENT_IDS.key],
                            description="remove from membership list",
                        ),
                        [dependents_write([d for d in source.dependent_ids if d != candidate_id])],
                    )
                )
            if candidate.source_ref:
                steps.extend(self._clear_link_steps(candidate_id))
            if not steps:
                return Ok(message=f"{candidate_id} was not linked to {source_id}.")

            result = self._run_steps("remove_dependent", steps, candidate_id)
            if isinstance(result, Ok):
                logger.info(f"✅ {candidate_id} no longer depends on {source_id}.")
            return result

    def set_ratio(self, dependent_id: str, new_ratio: int) -> Result:
        if not utils.is_positive_int(new_ratio):
            return self._reject(
                RejectionReason.INVALID_RATIO, f"Ratio must be a positive integer, got {new_ratio!r}."
            )
        with self._locked(dependent_id):
            try:
                state = self.store.read_relationship(dependent_id)
            except StoreError as e:
                return Failed(message=f"Could not read {dependent_id}: {e}")
            # A ratio only means something on an item that mirrors a source.
            if not state.source_ref:
                return self._reject(
                    RejectionReason.NOT_ASSIGNED, f"{dependent_id} is not a dependent of any source."
                )

            step = WriteStep(item_id=dependent_id, attributes=[RATIO.key], description="set ratio")
            result = self._run_steps("set_ratio", [(step, [ratio_write(new_ratio)])], dependent_id)
            if isinstance(result, Ok):
                logger.info(f"✅ Ratio of {dependent_id} set to {new_ratio}.")
            return result

    # --- Drift ---

    def reconcile(self, item_id: str, source_id: Optional[str] = None) -> ReconcileReport:
        """
        Reads both sides of a link and reports whether membership and
        back-reference agree. Read-only; a single report is a point-in-time
        observation and may already be outdated under concurrent edits.
        Raises StoreError if either side cannot be read.
        """
        state = self.store.read_relationship(item_id)

        if state.is_source and source_id is None:
            missing = [
                dependent_id
                for dependent_id in state.dependent_ids
                if self.store.read_relationship(dependent_id).source_ref != item_id
            ]
            if missing:
                return ReconcileReport(
                    item_id=item_id,
                    source_id=item_id,
                    status=ReconcileStatus.MISSING_BACK_REFERENCE,
                    missing_back_references=missing,
                    detail=f"{len(missing)} listed dependent(s) do not point back.",
                )
            return ReconcileReport(item_id=item_id, source_id=item_id, status=ReconcileStatus.CONSISTENT)

        target = source_id or state.source_ref
        if target is None:
            return ReconcileReport(
                item_id=item_id, status=ReconcileStatus.CONSISTENT, detail="Not linked."
            )

        source = self.store.read_relationship(target)
        listed = item_id in source.dependent_ids
        points_back = state.source_ref == target

        if points_back and not listed:
            return ReconcileReport(
                item_id=item_id,
                source_id=target,
                status=ReconcileStatus.ORPHANED_BACK_REFERENCE,
                detail=f"{item_id} points at {target}, which does not list it.",
            )
        if listed and not points_back:
            return ReconcileReport(
                item_id=item_id,
                source_id=target,
                status=ReconcileStatus.MISSING_BACK_REFERENCE,
                missing_back_references=[item_id],
                detail=f"{target} lists {item_id}, which points at {state.source_ref or 'nothing'}.",
            )
        return ReconcileReport(item_id=item_id, source_id=target, status=ReconcileStatus.CONSISTENT)

    def repair(self, report: ReconcileReport, strategy: RepairStrategy) -> Result:
        """
        Explicitly fixes the drift described by a report.
        COMPLETE writes the missing side of the link; REVERT removes the dangling side.
        The link is re-checked under lock first, so drift resolved in the meantime
        is left alone.
        """
        if report.status == ReconcileStatus.CONSISTENT or report.source_id is None:
            return Ok(message="Nothing to repair.")

        source_id = report.source_id
        involved = [report.item_id, source_id, *report.missing_back_references]
        with self._locked(*involved):
            try:
                current = self.reconcile(
                    report.item_id, None if report.item_id == source_id else source_id
                )
                source = self.store.read_relationship(source_id)
                if current.status == ReconcileStatus.CONSISTENT:
                    return Ok(message="Drift already resolved.")
                if current.status == ReconcileStatus.ORPHANED_BACK_REFERENCE:
                    steps = self._plan_orphan_repair(current, source, strategy)
                else:
                    steps = self._plan_missing_repair(current, source, strategy)
            except StoreError as e:
                return Failed(message=f"Could not re-check drift: {e}")

            if isinstance(steps, Rejected):
                return steps

            result = self._run_steps(f"repair ({strategy.value})", steps, current.item_id)
            if isinstance(result, Ok):
                logger.info(f"✅ Repaired {current.status.value} on {current.item_id} ({strategy.value}).")
            return result

    def _plan_orphan_repair(self, report, source, strategy) -> Union[list[PlannedWrite], Rejected]:
        if strategy == RepairStrategy.COMPLETE:
            if not source.is_source:
                return self._reject(RejectionReason.NOT_A_SOURCE, f"{source.item_id} is not a source.")
            return [
                (
                    WriteStep(
                        item_id=source.item_id,
                        attributes=[DEPENDENT_IDS.key],
                        description="append to membership list",
                    ),
                    [dependents_write(source.dependent_ids + [report.item_id])],
                )
            ]
        return self._clear_link_steps(report.item_id)

    def _plan_missing_repair(self, report, source, strategy) -> Union[list[PlannedWrite], Rejected]:
        missing = report.missing_back_references
        if strategy == RepairStrategy.REVERT:
            return [
                (
                    WriteStep(
                        item_id=source.item_id,
                        attributes=[DEPENDENT_IDS.key],
                        description="drop unreferenced members",
                    ),
                    [dependents_write([d for d in source.dependent_ids if d not in missing])],
                )
            ]

        steps: list[PlannedWrite] = []
        for dependent_id in missing:
            state = self.store.read_relationship(dependent_id)
            if state.is_source:
                return self._reject(
                    RejectionReason.CANDIDATE_IS_SOURCE, f"{dependent_id} is itself a source."
                )
            if state.source_ref and state.source_ref != source.item_id:
                return self._reject(
                    RejectionReason.ALREADY_ASSIGNED,
                    f"{dependent_id} already depends on {state.source_ref}.",
                )
            steps.append(
                (
                    WriteStep(
                        item_id=dependent_id,
                        attributes=[SOURCE_REF.key],
                        description="write missing back-reference",
                    ),
                    [source_ref_write(source.item_id)],
                )
            )
        return steps
