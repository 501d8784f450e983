"""Typed views of the documents the pipeline reads and writes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from servicedesk_notify.storage import schema

logger = logging.getLogger(__name__)


class DocumentModel(BaseModel):
    """Base for store documents: camelCase field names, unknown fields ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    @field_validator("*", mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info: ValidationInfo) -> Any:  # noqa: ANN401
        # Clients write explicit nulls for fields they never filled in
        if value is not None or info.field_name is None:
            return value
        field_info = cls.model_fields.get(info.field_name)
        if field_info is None:
            return value
        return field_info.get_default(call_default_factory=True)


class Comment(DocumentModel):
    id: str | None = None
    user_id: str = ""
    user_name: str = ""
    content: str = ""
    is_status_change: bool = False


class UserResponse(DocumentModel):
    user_id: str = ""
    user_name: str = ""
    response: str = ""


class FileAttachment(DocumentModel):
    name: str = ""
    url: str = ""
    type: str = ""


def _valid_entries(model: type[DocumentModel], value: Any, name: str) -> Any:  # noqa: ANN401
    """Keep the entries of a history array that parse as ``model``.

    Old entries are never re-read, so one malformed entry must not make the
    whole ticket unreadable.
    """
    if not isinstance(value, list):
        return value
    kept = []
    for index, entry in enumerate(value):
        if not isinstance(entry, dict):
            logger.warning(f"Dropping {name}[{index}]: expected an object, got {entry!r}")
            continue
        try:
            kept.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Dropping {name}[{index}]: {e}")
    return kept


class ServiceRequest(DocumentModel):
    """A service-request ticket. Only the fields notifications depend on."""

    title: str = ""
    type: str = ""
    priority: str = ""
    status: str = ""
    creator_id: str | None = None
    creator_name: str = ""
    on_location: bool = False
    assigned_users: list[Any] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    user_responses: list[UserResponse] = Field(default_factory=list)

    @field_validator("comments", mode="before")
    @classmethod
    def _drop_malformed_comments(cls, value: Any) -> Any:  # noqa: ANN401
        return _valid_entries(Comment, value, "comments")

    @field_validator("user_responses", mode="before")
    @classmethod
    def _drop_malformed_responses(cls, value: Any) -> Any:  # noqa: ANN401
        return _valid_entries(UserResponse, value, "userResponses")


class Announcement(DocumentModel):
    head: str = ""
    body: str = ""
    assigned_users: list[Any] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    file_attachments: list[FileAttachment] = Field(default_factory=list)


@dataclass
class NotificationContent:
    """What a recipient is told about one event.

    ``data`` always carries the event ``type`` and the subject ``id``; the
    pipeline adds ``notificationId`` per recipient before pushing.
    """

    title: str
    body: str
    data: dict[str, Any]
    image_urls: list[str] = field(default_factory=list)
    file_attachments: list[dict[str, Any]] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        """Body of a notification record, minus the server-assigned timestamp."""
        record: dict[str, Any] = {
            schema.FIELD_TITLE: self.title,
            schema.FIELD_BODY: self.body,
            schema.FIELD_DATA: dict(self.data),
            schema.FIELD_IS_READ: False,
            schema.FIELD_READ_AT: None,
        }
        if self.image_urls:
            record[schema.FIELD_IMAGE_URLS] = list(self.image_urls)
        if self.file_attachments:
            record[schema.FIELD_FILE_ATTACHMENTS] = [dict(a) for a in self.file_attachments]
        return record
