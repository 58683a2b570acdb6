"""
Event payload documents.

Each projected (entity_type, event_type) pair has a pydantic model that its
payload must validate against before it is folded into a projection. Update
payloads carry only the fields being changed; model_dump(exclude_unset=True)
yields exactly those.

Invariants:
    - Unknown fields are rejected (extra="forbid")
    - A field present in an update payload is applied, even if null,
      except for NOT NULL columns, which reject null
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PayloadModel(BaseModel):
    """Base class for event payload documents."""

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def fields_from(cls, payload: dict[str, Any], partial: bool = False) -> dict[str, Any]:
        """Validate a payload and return its field values.

        Args:
            payload: Raw event payload
            partial: Return only the fields the payload sets (PATCH semantics)

        Raises:
            pydantic.ValidationError: If the payload does not validate
        """
        return cls.model_validate(payload).model_dump(exclude_unset=partial)


class DeletedPayload(PayloadModel):
    reason: str | None = None


class CoworkerCreatedPayload(PayloadModel):
    name: str = Field(min_length=1)
    description: str | None = None
    role_prompt: str | None = None
    defaults_json: str | None = None
    template_id: str | None = None
    template_version: int | None = None
    template_description: str | None = None


class CoworkerUpdatedPayload(PayloadModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    role_prompt: str | None = None
    defaults_json: str | None = None
    template_description: str | None = None

    @field_validator("name")
    @classmethod
    def _name_not_null(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("name cannot be null")
        return value


class ChannelCreatedPayload(PayloadModel):
    name: str = Field(min_length=1)
    purpose: str | None = None
    pinned_json: str | None = None
    is_default: bool = False
    sort_order: int = 0


class ChannelUpdatedPayload(PayloadModel):
    name: str | None = Field(default=None, min_length=1)
    purpose: str | None = None
    pinned_json: str | None = None
    is_default: bool | None = None
    sort_order: int | None = None

    @field_validator("name", "is_default", "sort_order")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("field cannot be null")
        return value


class ThreadCreatedPayload(PayloadModel):
    channel_id: str = Field(min_length=1)
    title: str | None = None
    summary_ref: str | None = None


class ThreadUpdatedPayload(PayloadModel):
    title: str | None = None
    summary_ref: str | None = None


AuthorType = Literal["user", "coworker", "system"]
MessageStatus = Literal["pending", "streaming", "complete", "error"]


class MessageCreatedPayload(PayloadModel):
    thread_id: str = Field(min_length=1)
    author_type: AuthorType
    author_id: str | None = None
    content_ref: str | None = None
    content_short: str | None = None
    status: MessageStatus = "complete"


class MessageUpdatedPayload(PayloadModel):
    content_ref: str | None = None
    content_short: str | None = None
    status: MessageStatus | None = None

    @field_validator("status")
    @classmethod
    def _status_not_null(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("status cannot be null")
        return value
