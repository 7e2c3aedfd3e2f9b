"""
Memory implementation of CancellationRecordRepository.

Records are keyed by id with a secondary index on correlation id. A record
leaves ``pending`` exactly once; later status changes are refused.
"""

import logging
from typing import Any, Dict, List, Optional

from cancellation.domain import CancellationRecord, RecordStatus, utc_now
from cancellation.repositories import CancellationRecordRepository

logger = logging.getLogger(__name__)


class MemoryCancellationRecordRepository(CancellationRecordRepository):
    def __init__(self) -> None:
        logger.debug("Initializing MemoryCancellationRecordRepository")
        self._records: Dict[str, CancellationRecord] = {}
        self._by_correlation_id: Dict[str, str] = {}

    async def create(
        self, record: CancellationRecord
    ) -> CancellationRecord:
        if record.id in self._records:
            raise ValueError(f"Cancellation record {record.id} already exists")
        self._records[record.id] = record
        self._by_correlation_id[record.correlation_id] = record.id
        logger.info(
            "MemoryCancellationRecordRepository: Record created",
            extra={
                "record_id": record.id,
                "order_id": record.order_id,
                "product_id": record.product_id,
                "correlation_id": record.correlation_id,
            },
        )
        return record

    async def update_status(
        self,
        record_id: str,
        status: RecordStatus,
        external_provider_response: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> Optional[CancellationRecord]:
        record = self._records.get(record_id)
        if record is None:
            return None
        if record.status is not RecordStatus.PENDING:
            raise ValueError(
                f"Cancellation record {record_id} is already "
                f"{record.status.value}"
            )

        update: Dict[str, Any] = {"status": status, "updated_at": utc_now()}
        if external_provider_response is not None:
            update["external_provider_response"] = external_provider_response
        if notes is not None:
            update["notes"] = notes
        updated = record.model_copy(update=update)
        self._records[record_id] = updated
        logger.info(
            "MemoryCancellationRecordRepository: Record status updated",
            extra={
                "record_id": record_id,
                "correlation_id": record.correlation_id,
                "status": status.value,
            },
        )
        return updated

    async def find_by_correlation_id(
        self, correlation_id: str
    ) -> Optional[CancellationRecord]:
        record_id = self._by_correlation_id.get(correlation_id)
        return self._records.get(record_id) if record_id else None

    def all(self) -> List[CancellationRecord]:
        return list(self._records.values())
