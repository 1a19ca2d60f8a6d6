"""Pydantic schemas for the persisted CRM document and its records.

Defines all structured types stored under the reserved document key:
- Enums: EntityType, TaskType, LinkedEntityType
- Records: Contact, Deal, Task (with LinkedEntity)
- Document: StorageDocument, default_document()
- Results: StorageResult returned by every public storage operation

Records serialize with camelCase aliases (``extractedAt``, ``sourceUrl``)
so persisted payloads stay readable by the page-side harvesters. Fields the
storage layer does not know about are kept as-is.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


# ── Enums ───────────────────────────────────────────────────────────────────


class EntityType(str, Enum):
    """Record collections held in the storage document."""

    CONTACTS = "contacts"
    DEALS = "deals"
    TASKS = "tasks"


class TaskType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    TODO = "todo"


class LinkedEntityType(str, Enum):
    CONTACT = "contact"
    DEAL = "deal"


# ── Records ─────────────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class RecordBase(_CamelModel):
    """Fields every harvested record carries.

    Attributes:
        id: Content-derived identity, unique within one collection.
        extracted_at: Harvest time in ms; the recency tiebreaker on merge.
        source_url: Page the record was harvested from.
    """

    id: str = Field(min_length=1)
    extracted_at: int = 0
    source_url: str = ""


class Contact(RecordBase):
    name: str = ""
    email: str = ""
    phone: str = ""
    tags: list[str] = Field(default_factory=list)
    owner: str = ""


class Deal(RecordBase):
    title: str = ""
    value: float = 0.0
    currency: str = ""
    pipeline: str = ""
    stage: str = ""
    primary_contact: str = ""
    owner: str = ""


class LinkedEntity(_CamelModel):
    type: LinkedEntityType
    id: str
    name: str = ""


class Task(RecordBase):
    type: TaskType = TaskType.TODO
    title: str = ""
    due_date: str = ""
    assignee: str = ""
    linked_entity: LinkedEntity | None = None


Record = Contact | Deal | Task

RECORD_MODELS: dict[EntityType, type[RecordBase]] = {
    EntityType.CONTACTS: Contact,
    EntityType.DEALS: Deal,
    EntityType.TASKS: Task,
}


def coerce_records(entity_type: EntityType, records: Iterable[Any]) -> list[RecordBase]:
    """Validate raw dicts or foreign models into the collection's record type.

    Raises:
        pydantic.ValidationError: If any record does not fit the model.
    """
    model = RECORD_MODELS[entity_type]
    coerced: list[RecordBase] = []
    for record in records:
        if isinstance(record, model):
            coerced.append(record)
        elif isinstance(record, BaseModel):
            coerced.append(model.model_validate(record.model_dump(by_alias=True)))
        else:
            coerced.append(model.model_validate(record))
    return coerced


# ── Document ────────────────────────────────────────────────────────────────


class StorageDocument(_CamelModel):
    """The single persisted value holding every harvested collection.

    Invariant: within each collection no two records share an ``id``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    contacts: list[Contact] = Field(default_factory=list)
    deals: list[Deal] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    last_sync: int = 0
    sync_in_progress: bool = False

    def collection(self, entity_type: EntityType) -> list[RecordBase]:
        return list(getattr(self, entity_type.value))

    def with_collection(
        self, entity_type: EntityType, records: list[RecordBase], **updates: Any
    ) -> StorageDocument:
        """Return a copy with one collection replaced and other fields updated."""
        return self.model_copy(update={entity_type.value: list(records), **updates})

    def to_storage(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible dict written to the store."""
        return self.model_dump(by_alias=True, mode="json")


def default_document() -> StorageDocument:
    """A fresh empty document, used whenever none has been persisted yet."""
    return StorageDocument()


def load_document(raw: Any) -> StorageDocument:
    """Get-or-default: an absent value yields the default empty document.

    Raises:
        pydantic.ValidationError: If the persisted value is malformed.
    """
    if raw is None:
        return default_document()
    return StorageDocument.model_validate(raw)


# ── Results ─────────────────────────────────────────────────────────────────


class StorageResult(BaseModel, Generic[T]):
    """Outcome of a public storage operation.

    Operations never raise; they report success with an optional payload,
    or failure with a human-readable message.
    """

    success: bool
    payload: T | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, payload: T | None = None) -> StorageResult[T]:
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, error_message: str) -> StorageResult[T]:
        return cls(success=False, error_message=error_message)
