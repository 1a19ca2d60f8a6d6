"""Extraction agent: harvest one entity type and persist the batch."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.harvest.storage.orchestrator import StorageOrchestrator
from src.harvest.storage.schemas import EntityType, now_ms

logger = structlog.get_logger(__name__)


class RecordHarvester(ABC):
    """Produces records for one entity type from the current page.

    Implementations may walk pagination and concatenate pages; the agent
    only sees the final batch.
    """

    @abstractmethod
    async def harvest_records(self, entity_type: EntityType) -> Sequence[Any]:
        """Return zero or more records (models or raw dicts)."""
        ...


class ExtractionOutcome(BaseModel):
    """Result of one extraction run, reported back to the coordinator."""

    success: bool
    entity_type: EntityType | str
    extracted_count: int = 0
    error_message: str | None = None
    timestamp: int = Field(default_factory=now_ms)


class ExtractionAgent:
    """Runs a harvester and stores what it finds.

    Args:
        harvester: Source of records.
        orchestrator: Shared storage orchestrator for this process.
        clock: Millisecond clock for outcome timestamps.
    """

    def __init__(
        self,
        harvester: RecordHarvester,
        orchestrator: StorageOrchestrator,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._harvester = harvester
        self._orchestrator = orchestrator
        self._clock = clock

    async def run(self, entity_type: EntityType | str) -> ExtractionOutcome:
        """Harvest entity_type and persist the batch.

        Failures, including an unknown entity type, come back as a failed
        outcome instead of raising.
        """
        try:
            entity = EntityType(entity_type)
        except ValueError:
            logger.warning("extraction.unknown_entity_type", entity_type=str(entity_type))
            return self._outcome(
                entity_type, success=False, error_message=f"Unknown entity type: {entity_type}"
            )
        log = logger.bind(entity_type=entity.value)

        try:
            records = list(await self._harvester.harvest_records(entity))
        except Exception as exc:
            log.warning("extraction.harvest_failed", error=str(exc))
            return self._outcome(entity, success=False, error_message=str(exc) or "Harvest failed")

        if not records:
            log.info("extraction.nothing_found")
            return self._outcome(entity, success=True)

        result = await self._orchestrator.insert_with_dedup(entity, records)
        if not result.success:
            log.warning("extraction.store_failed", error=result.error_message)
            return self._outcome(entity, success=False, error_message=result.error_message)

        log.info("extraction.complete", harvested=len(records), inserted=result.payload)
        return self._outcome(entity, success=True, extracted_count=result.payload or 0)

    def _outcome(self, entity: EntityType | str, **fields: Any) -> ExtractionOutcome:
        return ExtractionOutcome(entity_type=entity, timestamp=self._clock(), **fields)
