"""Boundary between page harvesters and the storage layer.

Harvesters produce record batches; the ExtractionAgent hands each batch to
the StorageOrchestrator and reports an ExtractionOutcome.
"""

from src.harvest.extraction.agent import ExtractionAgent, ExtractionOutcome, RecordHarvester

__all__ = [
    "ExtractionAgent",
    "ExtractionOutcome",
    "RecordHarvester",
]
