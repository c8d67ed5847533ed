import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict

from . import settings, utils
from .client import PlatformClient
from .exceptions import UserErrorsRaised
from .schemas import AttributeType, AttributeWrite, Item

logger = logging.getLogger(__name__)


class AttributeDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    namespace: str
    key: str
    type: AttributeType
    name: str
    description: str
    # Alias under which export and detail queries select this attribute.
    alias: str


IS_SOURCE = AttributeDefinition(
    namespace=settings.SOURCE_NAMESPACE,
    key=settings.SOURCE_KEY,
    type=AttributeType.BOOLEAN,
    name="Stock Sync - Source",
    description="True if this item is the authoritative stock source for its dependents. A source cannot be a dependent.",
    alias="masterMetafield",
)
DEPENDENT_IDS = AttributeDefinition(
    namespace=settings.DEPENDENTS_NAMESPACE,
    key=settings.DEPENDENTS_KEY,
    type=AttributeType.ITEM_REFERENCE_LIST,
    name="Stock Sync - Dependents",
    description="Items whose stock mirrors this source.",
    alias="childrenMetafield",
)
SOURCE_REF = AttributeDefinition(
    namespace=settings.SOURCE_REF_NAMESPACE,
    key=settings.SOURCE_REF_KEY,
    type=AttributeType.ITEM_REFERENCE_LIST,
    name="Stock Sync - Source Reference",
    description="The source this dependent mirrors.",
    alias="parentMasterMetafield",
)
RATIO = AttributeDefinition(
    namespace=settings.RATIO_NAMESPACE,
    key=settings.RATIO_KEY,
    type=AttributeType.POSITIVE_INTEGER,
    name="Stock Sync - Ratio",
    description="Units of source stock consumed per unit of this dependent sold. 1 by default.",
    alias="qtyManagementMetafield",
)

RELATIONSHIP_ATTRIBUTES = [IS_SOURCE, DEPENDENT_IDS, SOURCE_REF, RATIO]


# --- Typed writes ---


def source_flag_write(is_source: bool) -> AttributeWrite:
    return AttributeWrite(
        namespace=IS_SOURCE.namespace, key=IS_SOURCE.key, value=is_source, type=IS_SOURCE.type
    )


def dependents_write(dependent_ids: list[str]) -> AttributeWrite:
    return AttributeWrite(
        namespace=DEPENDENT_IDS.namespace,
        key=DEPENDENT_IDS.key,
        value=list(dependent_ids),
        type=DEPENDENT_IDS.type,
    )


def source_ref_write(source_id: Optional[str]) -> AttributeWrite:
    # An empty array, not absence, is how "no source" is written.
    return AttributeWrite(
        namespace=SOURCE_REF.namespace,
        key=SOURCE_REF.key,
        value=[source_id] if source_id else [],
        type=SOURCE_REF.type,
    )


def ratio_write(ratio: Optional[int]) -> AttributeWrite:
    return AttributeWrite(namespace=RATIO.namespace, key=RATIO.key, value=ratio, type=RATIO.type)


def encode_value(write: AttributeWrite) -> Optional[str]:
    """Serializes a typed value into the platform's string wire format."""
    if write.value is None:
        return None
    if write.type == AttributeType.BOOLEAN:
        return "true" if write.value is True or write.value == "true" else "false"
    if write.type == AttributeType.POSITIVE_INTEGER:
        if not utils.is_positive_int(write.value):
            raise ValueError(f"{write.key} must be a positive integer, got {write.value!r}")
        return str(write.value)
    if write.type == AttributeType.ITEM_REFERENCE_LIST:
        if isinstance(write.value, str):
            return json.dumps([write.value]) if write.value else "[]"
        return json.dumps(list(write.value))
    raise ValueError(f"Unsupported attribute type: {write.type}")


class RelationshipState(BaseModel):
    """The four relationship attributes of one item, as read right now."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    is_source: bool = False
    dependent_ids: list[str] = []
    source_ref: Optional[str] = None
    ratio: int = 1


def _attribute_value(record: dict, definition: AttributeDefinition) -> Optional[str]:
    field = record.get(definition.alias)
    return field.get("value") if isinstance(field, dict) else None


def item_from_record(record: dict[str, Any], parent: Optional[dict] = None) -> Item:
    """
    Builds an Item from an item-shaped record (export line or detail query node).
    Relationship attributes are selected under fixed aliases.
    """
    is_source = utils.parse_bool(_attribute_value(record, IS_SOURCE))
    image = record.get("image") or {}
    parent = parent or record.get("product") or {}
    return Item(
        id=record["id"],
        title=record.get("title") or "",
        sku=record.get("sku") or "",
        inventory_quantity=record.get("inventoryQuantity") or 0,
        image_src=image.get("originalSrc") or parent.get("image_src"),
        parent_id=parent.get("id"),
        parent_title=parent.get("title") or "",
        is_source=is_source,
        # Only a source's membership list is meaningful.
        dependent_ids=(
            utils.parse_reference_list(_attribute_value(record, DEPENDENT_IDS))
            if is_source
            else []
        ),
        source_ref=utils.parse_source_ref(_attribute_value(record, SOURCE_REF)),
        ratio=utils.coerce_ratio(_attribute_value(record, RATIO)),
    )


def relationship_selection() -> str:
    """GraphQL selection for the four relationship attributes."""
    return "\n".join(
        f'{d.alias}: metafield(namespace: "{d.namespace}", key: "{d.key}") {{ id value }}'
        for d in RELATIONSHIP_ATTRIBUTES
    )


class AttributeStore(ABC):
    """
    Typed get/set of named attributes on one item.
    No consistency guarantee beyond per-call success or failure: two calls are
    never atomic with respect to each other.
    """

    @abstractmethod
    def get_attribute(self, item_id: str, namespace: str, key: str) -> Optional[str]:
        """Returns the raw stored value, or None when the attribute is absent."""
        pass

    @abstractmethod
    def set_attributes(self, item_id: str, writes: list[AttributeWrite]) -> None:
        """
        Writes all given attributes of one item in a single call, so they land
        or fail together. A call either sets values or deletes attributes
        (value None), never both; mixing them raises ValueError.
        Raises TransportError or UserErrorsRaised on failure.
        """
        pass

    @abstractmethod
    def get_item(self, item_id: str) -> Item:
        """Fetches display data and relationship attributes of one item."""
        pass

    def read_relationship(self, item_id: str) -> RelationshipState:
        is_source = utils.parse_bool(
            self.get_attribute(item_id, IS_SOURCE.namespace, IS_SOURCE.key)
        )
        dependent_ids = utils.parse_reference_list(
            self.get_attribute(item_id, DEPENDENT_IDS.namespace, DEPENDENT_IDS.key)
        )
        source_ref = utils.parse_source_ref(
            self.get_attribute(item_id, SOURCE_REF.namespace, SOURCE_REF.key)
        )
        ratio = utils.coerce_ratio(self.get_attribute(item_id, RATIO.namespace, RATIO.key))
        return RelationshipState(
            item_id=item_id,
            is_source=is_source,
            dependent_ids=dependent_ids,
            source_ref=source_ref,
            ratio=ratio,
        )


GET_ATTRIBUTE_QUERY = """
query GetItemAttribute($id: ID!, $namespace: String!, $key: String!) {
  node(id: $id) {
    ... on ProductVariant {
      metafield(namespace: $namespace, key: $key) { value }
    }
  }
}
"""

SET_ATTRIBUTES_MUTATION = """
mutation SetItemAttributes($input: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $input) {
    metafields { id namespace key value }
    userErrors { field message }
  }
}
"""

DELETE_ATTRIBUTES_MUTATION = """
mutation DeleteItemAttributes($input: [MetafieldIdentifierInput!]!) {
  metafieldsDelete(metafields: $input) {
    deletedMetafields { key namespace ownerId }
    userErrors { field message }
  }
}
"""

GET_DEFINITIONS_QUERY = """
query GetAttributeDefinitions($namespace: String!, $ownerType: MetafieldOwnerType!) {
  metafieldDefinitions(first: 100, namespace: $namespace, ownerType: $ownerType) {
    edges { node { key } }
  }
}
"""

CREATE_DEFINITION_MUTATION = """
mutation CreateAttributeDefinition($definition: MetafieldDefinitionInput!) {
  metafieldDefinitionCreate(definition: $definition) {
    createdDefinition { id name }
    userErrors { field message code }
  }
}
"""


class ShopifyAttributeStore(AttributeStore):
    """Attribute store backed by variant metafields."""

    OWNER_TYPE = "PRODUCTVARIANT"

    def __init__(self, client: Optional[PlatformClient] = None):
        self.client = client or PlatformClient()

    def get_attribute(self, item_id: str, namespace: str, key: str) -> Optional[str]:
        data = self.client.execute(
            GET_ATTRIBUTE_QUERY, {"id": item_id, "namespace": namespace, "key": key}
        )
        node = data.get("node") or {}
        metafield = node.get("metafield") or {}
        return metafield.get("value")

    def set_attributes(self, item_id: str, writes: list[AttributeWrite]) -> None:
        to_set = [w for w in writes if w.value is not None]
        to_delete = [w for w in writes if w.value is None]
        if to_set and to_delete:
            raise ValueError(
                f"Cannot set and delete attributes of {item_id} in one call: {[w.key for w in writes]}"
            )

        if to_set:
            variables = {
                "input": [
                    {
                        "ownerId": item_id,
                        "namespace": w.namespace,
                        "key": w.key,
                        "value": encode_value(w),
                        "type": w.type.value,
                    }
                    for w in to_set
                ]
            }
            data = self.client.execute(SET_ATTRIBUTES_MUTATION, variables)
            self._raise_user_errors(data.get("metafieldsSet"))

        if to_delete:
            variables = {
                "input": [
                    {"ownerId": item_id, "namespace": w.namespace, "key": w.key}
                    for w in to_delete
                ]
            }
            data = self.client.execute(DELETE_ATTRIBUTES_MUTATION, variables)
            self._raise_user_errors(data.get("metafieldsDelete"))

        logger.debug(f"Wrote {[w.key for w in writes]} on {item_id}")

    def get_item(self, item_id: str) -> Item:
        query = f"""
        query GetItemDetail($id: ID!) {{
          node(id: $id) {{
            ... on ProductVariant {{
              id
              title
              sku
              inventoryQuantity
              image {{ originalSrc }}
              product {{ id title }}
              {relationship_selection()}
            }}
          }}
        }}
        """
        data = self.client.execute(query, {"id": item_id})
        node = data.get("node")
        if not node:
            raise UserErrorsRaised([{"field": ["id"], "message": f"Item {item_id} not found"}])
        return item_from_record(node)

    def ensure_definitions(self) -> list[str]:
        """
        Creates any missing attribute definitions for the relationship attributes.
        Returns the keys that were created.
        """
        created = []
        for definition in RELATIONSHIP_ATTRIBUTES:
            data = self.client.execute(
                GET_DEFINITIONS_QUERY,
                {"namespace": definition.namespace, "ownerType": self.OWNER_TYPE},
            )
            edges = (data.get("metafieldDefinitions") or {}).get("edges", [])
            existing_keys = {edge["node"]["key"] for edge in edges}
            if definition.key in existing_keys:
                logger.info(f"Attribute definition '{definition.key}' already exists.")
                continue

            data = self.client.execute(
                CREATE_DEFINITION_MUTATION,
                {
                    "definition": {
                        "namespace": definition.namespace,
                        "key": definition.key,
                        "name": definition.name,
                        "description": definition.description,
                        "type": definition.type.value,
                        "ownerType": self.OWNER_TYPE,
                    }
                },
            )
            self._raise_user_errors(data.get("metafieldDefinitionCreate"))
            logger.info(f"✅ Created attribute definition '{definition.key}'.")
            created.append(definition.key)
        return created

    @staticmethod
    def _raise_user_errors(payload: Optional[dict]) -> None:
        errors = (payload or {}).get("userErrors") or []
        if errors:
            logger.error(f"❌ Platform rejected the write: {errors}")
            raise UserErrorsRaised(errors)
