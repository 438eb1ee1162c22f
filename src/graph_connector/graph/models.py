"""Pydantic models for the Microsoft Graph external connectors wire format.

Field names are snake_case in Python and camelCase on the wire. Serialize
with ``to_wire()`` so aliases are used and unset optionals are omitted.

Reference: https://learn.microsoft.com/graph/api/resources/externalconnectors-externalitem
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "Acl",
    "ActivityType",
    "ExternalActivity",
    "ExternalConnection",
    "ExternalItem",
    "ExternalItemContent",
    "Identity",
    "Label",
    "Property",
    "PropertyType",
    "Schema",
]

EXTERNAL_ACTIVITY_ODATA_TYPE = "#microsoft.graph.externalConnectors.externalActivity"


class PropertyType(str, Enum):
    """Schema property data types."""

    STRING = "string"
    INT64 = "int64"
    DOUBLE = "double"
    DATETIME = "dateTime"
    BOOLEAN = "boolean"
    STRING_COLLECTION = "stringCollection"


class Label(str, Enum):
    """Semantic labels Microsoft Search understands."""

    TITLE = "title"
    URL = "url"
    CREATED_BY = "createdBy"
    LAST_MODIFIED_BY = "lastModifiedBy"
    LAST_MODIFIED_DATETIME = "lastModifiedDateTime"
    ICON_URL = "iconUrl"


class ActivityType(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    COMMENTED = "commented"
    VIEWED = "viewed"


class GraphModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="allow",
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict using Graph field names."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Property(GraphModel):
    name: str
    type: PropertyType
    aliases: list[str] | None = None
    is_searchable: bool = False
    is_queryable: bool = False
    is_retrievable: bool = False
    is_refinable: bool = False
    labels: list[Label] | None = None


class Schema(GraphModel):
    base_type: str = "microsoft.graph.externalItem"
    properties: list[Property]


class Acl(GraphModel):
    type: str  # user, group, everyone, everyoneExceptGuests, externalGroup
    value: str
    access_type: str  # grant, deny


class Identity(GraphModel):
    id: str
    type: str = "user"


class ExternalActivity(GraphModel):
    odata_type: str = Field(default=EXTERNAL_ACTIVITY_ODATA_TYPE, alias="@odata.type")
    type: ActivityType
    start_date_time: datetime
    performed_by: Identity


class ExternalItemContent(GraphModel):
    type: str  # text, html
    value: str


class ExternalItem(GraphModel):
    """One document in a connection, keyed by a stable item ID."""

    id: str
    acl: list[Acl]
    properties: dict[str, Any]
    content: ExternalItemContent | None = None
    activities: list[ExternalActivity] | None = None


class ExternalConnection(GraphModel):
    """A search connection; ``connector_id`` links it to an M365 app."""

    id: str
    name: str | None = None
    description: str | None = None
    connector_id: str | None = None
    state: str | None = None
    activity_settings: dict[str, Any] | None = None
    search_settings: dict[str, Any] | None = None
