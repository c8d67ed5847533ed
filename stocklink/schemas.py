from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


# --- Attributes ---


class AttributeType(str, Enum):
    BOOLEAN = "boolean"
    POSITIVE_INTEGER = "number_integer"
    ITEM_REFERENCE_LIST = "list.variant_reference"


class AttributeWrite(BaseModel):
    """One typed attribute write. A value of None deletes the attribute."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    key: str
    value: Union[bool, int, list[str], str, None]
    type: AttributeType


# --- Catalog ---


class ItemImage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    original_src: str = Field(..., alias="originalSrc")


class CatalogAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    namespace: str
    key: str
    value: str


class Item(BaseModel):
    """
    A sellable catalog item together with its relationship attributes.
    The catalog owns the item; only the relationship fields are ever written here.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str = ""
    sku: str = ""
    inventory_quantity: int = Field(default=0, alias="inventoryQuantity")
    image_src: Optional[str] = None
    parent_id: Optional[str] = None
    parent_title: str = ""

    is_source: bool = False
    dependent_ids: list[str] = Field(default_factory=list)
    source_ref: Optional[str] = None
    ratio: int = Field(default=1, ge=1)

    @property
    def participates(self) -> bool:
        """True when the item counts toward the plan limit."""
        return (self.is_source and bool(self.dependent_ids)) or bool(self.source_ref)


class CatalogEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str = ""
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    images: list[ItemImage] = Field(default_factory=list)
    attributes: list[CatalogAttribute] = Field(default_factory=list)
    items: list[Item] = Field(default_factory=list)


class Snapshot(BaseModel):
    """Point-in-time reconstruction of the whole catalog from one export job."""

    model_config = ConfigDict(frozen=True)

    version: int
    job_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    fetched_at: datetime
    entries: list[CatalogEntry] = Field(default_factory=list)

    def items(self) -> list[Item]:
        return [item for entry in self.entries for item in entry.items]

    def item(self, item_id: str) -> Optional[Item]:
        for entry in self.entries:
            for item in entry.items:
                if item.id == item_id:
                    return item
        return None


# --- Bulk Export ---


class ExportState(str, Enum):
    NONE = "NONE"
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    CANCELING = "CANCELING"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


IN_FLIGHT_STATES = {ExportState.CREATED, ExportState.RUNNING, ExportState.CANCELING}


class ExportStatus(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_id: Optional[str] = Field(default=None, alias="id")
    state: ExportState = Field(default=ExportState.NONE, alias="status")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    result_url: Optional[str] = Field(default=None, alias="url")
    error_code: Optional[str] = Field(default=None, alias="errorCode")
    object_count: Optional[int] = Field(default=None, alias="objectCount")


class SnapshotView(BaseModel):
    """What a caller gets back from a snapshot request."""

    model_config = ConfigDict(frozen=True)

    state: ExportState
    in_progress: bool
    snapshot: Optional[Snapshot] = None
    stale: bool = False
    error: Optional[str] = None


# --- Edit Intents ---


class AddDependent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["add_dependent"] = "add_dependent"
    source_id: str
    candidate_id: str
    ratio: int = 1


class RemoveDependent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["remove_dependent"] = "remove_dependent"
    source_id: str
    candidate_id: str


class SetRatio(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["set_ratio"] = "set_ratio"
    dependent_id: str
    ratio: int


class PromoteToSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["promote_to_source"] = "promote_to_source"
    item_id: str


class DemoteFromSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["demote_from_source"] = "demote_from_source"
    item_id: str


EditIntent = Annotated[
    Union[AddDependent, RemoveDependent, SetRatio, PromoteToSource, DemoteFromSource],
    Field(discriminator="kind"),
]


# --- Edit Results ---


class RejectionReason(str, Enum):
    ALREADY_DEPENDENT = "AlreadyDependent"
    CANDIDATE_IS_SOURCE = "CandidateIsSource"
    ALREADY_ASSIGNED = "AlreadyAssigned"
    NOT_A_SOURCE = "NotASource"
    SELF_REFERENCE = "SelfReference"
    NOT_ASSIGNED = "NotAssigned"
    INVALID_RATIO = "InvalidRatio"
    HAS_DEPENDENTS = "HasDependents"
    OVER_LIMIT = "OverLimit"
    EDIT_IN_FLIGHT = "EditInFlight"


class WriteStep(BaseModel):
    """One attribute write of a multi-step operation."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    attributes: list[str]
    description: str


class Ok(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ok"] = "ok"
    message: str = ""


class Rejected(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["rejected"] = "rejected"
    reason: RejectionReason
    message: str = ""


class PartialFailure(BaseModel):
    """Some writes landed and some did not; the store may now hold drift."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["partial_failure"] = "partial_failure"
    landed: list[WriteStep]
    not_landed: list[WriteStep]
    orphaned_item_id: str
    message: str = ""


class Failed(BaseModel):
    """A transport failure before any write landed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    message: str


EditResult = Annotated[
    Union[Ok, Rejected, PartialFailure, Failed], Field(discriminator="kind")
]


# --- Drift ---


class ReconcileStatus(str, Enum):
    CONSISTENT = "Consistent"
    ORPHANED_BACK_REFERENCE = "OrphanedBackReference"
    MISSING_BACK_REFERENCE = "MissingBackReference"


class RepairStrategy(str, Enum):
    COMPLETE = "complete"  # write the missing side
    REVERT = "revert"  # remove the dangling side


class ReconcileReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    source_id: Optional[str] = None
    status: ReconcileStatus
    # Dependents listed by a source that do not point back to it.
    missing_back_references: list[str] = Field(default_factory=list)
    detail: str = ""


# --- Limits ---


class LimitStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["within_limit", "over_limit"]
    count: int
    limit: Optional[int] = None
    excess: int = 0

    @property
    def over_limit(self) -> bool:
        return self.kind == "over_limit"


# --- Details ---


class ItemDetail(BaseModel):
    """Display data for one item; degraded when its fetch failed."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    item: Optional[Item] = None
    degraded: bool = False
    error: Optional[str] = None


# --- Report Rows ---


class RelationshipRow(BaseModel):
    """
    Defines the data contract for a single source/dependent link in the report.
    One row per link, plus one row for each source with no dependents yet.
    """

    model_config = ConfigDict(populate_by_name=True)

    source_id: str = Field(..., alias="Source ID")
    source_title: str = Field(default="", alias="Source")
    source_sku: str = Field(default="", alias="Source SKU")
    source_quantity: int = Field(default=0, alias="Source Qty")
    dependent_id: Optional[str] = Field(default=None, alias="Dependent ID")
    dependent_title: str = Field(default="", alias="Dependent")
    dependent_sku: str = Field(default="", alias="Dependent SKU")
    dependent_quantity: int = Field(default=0, alias="Dependent Qty")
    ratio: int = Field(default=1, ge=1, alias="Ratio")
    snapshot_date: datetime = Field(..., alias="Snapshot Date")


class DriftRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(..., alias="Item ID")
    source_id: Optional[str] = Field(default=None, alias="Source ID")
    status: ReconcileStatus = Field(..., alias="Status")
    detail: str = Field(default="", alias="Detail")
    checked_at: datetime = Field(..., alias="Checked At")


class CandidateStatus(BaseModel):
    """Whether an item can be linked as a dependent, and why not."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    is_source: bool = False
    is_dependent: bool = False
    source_id: Optional[str] = None
    # A source whose membership list names the item, found in the snapshot.
    listed_by: Optional[str] = None
    listed_by_title: str = ""

    @property
    def available(self) -> bool:
        return not (self.is_source or self.is_dependent or self.listed_by)
