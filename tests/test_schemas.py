"""Tests for storage schemas.

Covers:
- camelCase aliases in and out, snake_case population
- Record coercion from dicts and foreign models
- Get-or-default document loading
- StorageResult constructors
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.harvest.storage.schemas import (
    Contact,
    Deal,
    EntityType,
    LinkedEntityType,
    StorageDocument,
    StorageResult,
    Task,
    TaskType,
    coerce_records,
    default_document,
    load_document,
)


class TestRecords:
    """Record models."""

    def test_camel_case_aliases(self):
        deal = Deal.model_validate(
            {"id": "d1", "extractedAt": 7, "primaryContact": "Ann", "sourceUrl": "https://x/deals"}
        )
        assert deal.extracted_at == 7
        assert deal.primary_contact == "Ann"
        dumped = deal.model_dump(by_alias=True)
        assert dumped["extractedAt"] == 7
        assert dumped["primaryContact"] == "Ann"

    def test_task_with_linked_entity(self):
        task = Task.model_validate(
            {
                "id": "t1",
                "type": "meeting",
                "dueDate": "2026-10-20",
                "linkedEntity": {"type": "deal", "id": "d1", "name": "Renewal"},
            }
        )
        assert task.type == TaskType.MEETING
        assert task.linked_entity.type == LinkedEntityType.DEAL
        assert task.model_dump(by_alias=True, mode="json")["linkedEntity"]["type"] == "deal"

    def test_invalid_task_type(self):
        with pytest.raises(ValidationError):
            Task.model_validate({"id": "t1", "type": "fax"})

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            Contact(id="")


class TestCoerceRecords:
    """Batch coercion into the collection's model."""

    def test_dicts_and_models(self):
        records = coerce_records(
            EntityType.CONTACTS,
            [{"id": "a", "extractedAt": 1}, Contact(id="b", extracted_at=2)],
        )
        assert all(isinstance(r, Contact) for r in records)
        assert [r.id for r in records] == ["a", "b"]

    def test_foreign_model_is_revalidated(self):
        records = coerce_records(EntityType.DEALS, [Contact(id="a", extracted_at=3, name="Ann")])
        assert isinstance(records[0], Deal)
        assert records[0].extracted_at == 3


class TestDocument:
    """StorageDocument helpers."""

    def test_load_missing_is_default(self):
        assert load_document(None) == default_document()

    def test_default_document_is_fresh(self):
        first = default_document()
        first.contacts.append(Contact(id="a"))
        assert default_document().contacts == []

    def test_load_partial_document(self):
        document = load_document({"lastSync": 9, "contacts": [{"id": "a"}]})
        assert document.last_sync == 9
        assert document.sync_in_progress is False
        assert document.collection(EntityType.CONTACTS)[0].id == "a"

    def test_with_collection_does_not_mutate(self):
        document = load_document({"deals": [{"id": "d"}]})
        updated = document.with_collection(EntityType.DEALS, [], last_sync=5)
        assert len(document.deals) == 1
        assert updated.deals == []
        assert updated.last_sync == 5

    def test_to_storage_layout(self):
        assert default_document().to_storage() == {
            "contacts": [],
            "deals": [],
            "tasks": [],
            "lastSync": 0,
            "syncInProgress": False,
        }


class TestStorageResult:
    """Result constructors."""

    def test_ok(self):
        result = StorageResult[int].ok(3)
        assert result.success is True
        assert result.payload == 3
        assert result.error_message is None

    def test_fail(self):
        result = StorageResult.fail("Record not found")
        assert result.success is False
        assert result.payload is None
        assert result.error_message == "Record not found"
