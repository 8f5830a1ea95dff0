"""Gmail REST API response models.

Field names are snake_case; the JSON wire format is camelCase.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GmailModel(BaseModel):
    """Base model for Gmail API payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class GmailProfile(GmailModel):
    email_address: str
    messages_total: int | None = None
    threads_total: int | None = None
    history_id: str | None = None


class GmailThreadSummary(GmailModel):
    id: str
    snippet: str | None = None
    history_id: str | None = None


class GmailThreadListResponse(GmailModel):
    threads: list[GmailThreadSummary] = Field(default_factory=list)
    next_page_token: str | None = None
    result_size_estimate: int | None = None


class MessageHeader(GmailModel):
    name: str
    value: str


class MessageBody(GmailModel):
    attachment_id: str | None = None
    size: int | None = None
    data: str | None = None


class MessagePayload(GmailModel):
    part_id: str | None = None
    mime_type: str = ""
    filename: str | None = None
    headers: list[MessageHeader] = Field(default_factory=list)
    body: MessageBody | None = None
    parts: list[MessagePayload] = Field(default_factory=list)


class GmailMessage(GmailModel):
    id: str
    thread_id: str
    label_ids: list[str] = Field(default_factory=list)
    snippet: str | None = None
    history_id: str | None = None
    internal_date: str | None = None
    payload: MessagePayload | None = None
    size_estimate: int | None = None


class GmailThread(GmailModel):
    id: str
    history_id: str | None = None
    messages: list[GmailMessage] = Field(default_factory=list)


class GmailLabel(GmailModel):
    id: str
    name: str
    type: str | None = None
    message_list_visibility: str | None = None
    label_list_visibility: str | None = None


class GmailLabelsResponse(GmailModel):
    labels: list[GmailLabel] = Field(default_factory=list)


class GmailHistoryMessage(GmailModel):
    message: GmailMessage


class GmailHistoryEntry(GmailModel):
    id: str
    messages: list[GmailMessage] = Field(default_factory=list)
    messages_added: list[GmailHistoryMessage] = Field(default_factory=list)
    messages_deleted: list[GmailHistoryMessage] = Field(default_factory=list)


class GmailHistoryListResponse(GmailModel):
    history: list[GmailHistoryEntry] = Field(default_factory=list)
    history_id: str | None = None
    next_page_token: str | None = None


class GmailSentMessage(GmailModel):
    """Response of users.messages.send."""

    id: str
    thread_id: str
    label_ids: list[str] = Field(default_factory=list)
