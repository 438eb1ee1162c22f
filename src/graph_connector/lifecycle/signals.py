"""Lifecycle notification models.

Microsoft 365 admin center sends a change notification collection when an
admin enables or disables the connector app:

    {
      "value": [
        {"resourceData": {"id": "<connectorId>", "state": "enabled",
                          "connectorsTicket": "..."}}
      ],
      "validationTokens": ["<jwt>", ...]
    }
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class DesiredState(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


class ReconciliationResult(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS_NOOP = "already-exists-noop"
    DELETED = "deleted"
    ALREADY_ABSENT_NOOP = "already-absent-noop"
    DISCARDED = "discarded"


class SignalDiscarded(Exception):
    """Signal could not be parsed or authenticated; it is dropped with no side effect."""


class _ResourceData(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    state: DesiredState
    connectors_ticket: str | None = Field(default=None, alias="connectorsTicket")


class _Notification(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    resource_data: _ResourceData = Field(alias="resourceData")


class _NotificationCollection(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    value: list[_Notification] = Field(min_length=1)
    validation_tokens: list[str] = Field(default_factory=list, alias="validationTokens")


class LifecycleSignal(BaseModel):
    """One inbound lifecycle signal, flattened from its notification."""

    model_config = ConfigDict(frozen=True)

    resource_id: str
    desired_state: DesiredState
    ticket: str | None = None
    proof_tokens: tuple[str, ...] = ()

    @classmethod
    def parse(cls, raw_body: bytes | str) -> "LifecycleSignal":
        """Parse a notification collection; the first notification is used.

        Raises:
            SignalDiscarded: Malformed JSON or missing required fields
        """
        try:
            collection = _NotificationCollection.model_validate_json(raw_body)
        except ValidationError as e:
            raise SignalDiscarded(f"Malformed lifecycle notification ({e.error_count()} errors)") from e

        data = collection.value[0].resource_data
        return cls(
            resource_id=data.id,
            desired_state=data.state,
            ticket=data.connectors_ticket,
            proof_tokens=tuple(collection.validation_tokens),
        )
