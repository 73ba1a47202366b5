"""
Loan/entity lookups used for context snapshots and conditions
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..clock import utcnow
from ..models.execution import EntityState


class EntityDirectory(ABC):
    """Read access to the loan records owned by the rest of the platform"""

    @abstractmethod
    async def get_context(self, entity_id: str) -> Dict[str, Any]:
        """Template variables and contact details for an entity"""
        pass

    @abstractmethod
    async def get_state(self, entity_id: str, now: datetime = None) -> EntityState:
        """Current task statuses, activity and loan status"""
        pass


@dataclass
class _EntityRecord:
    context: Dict[str, Any] = field(default_factory=dict)
    task_statuses: Dict[str, str] = field(default_factory=dict)
    last_activity_at: Optional[datetime] = None
    loan_status: Optional[str] = None


class InMemoryEntityDirectory(EntityDirectory):
    """Dictionary-backed directory for tests and local runs"""

    def __init__(self):
        self.records: Dict[str, _EntityRecord] = {}

    def register(
        self,
        entity_id: str,
        context: Dict[str, Any] = None,
        task_statuses: Dict[str, str] = None,
        last_activity_at: datetime = None,
        loan_status: str = None
    ):
        self.records[entity_id] = _EntityRecord(
            context=dict(context or {}),
            task_statuses=dict(task_statuses or {}),
            last_activity_at=last_activity_at,
            loan_status=loan_status
        )

    def set_task_status(self, entity_id: str, task_key: str, status: str):
        self._record(entity_id).task_statuses[task_key] = status

    def record_activity(self, entity_id: str, at: datetime = None):
        self._record(entity_id).last_activity_at = at or utcnow()

    def set_loan_status(self, entity_id: str, status: str):
        self._record(entity_id).loan_status = status

    async def get_context(self, entity_id: str) -> Dict[str, Any]:
        record = self.records.get(entity_id)
        context = dict(record.context) if record else {}
        context.setdefault("entity_id", entity_id)
        return context

    async def get_state(self, entity_id: str, now: datetime = None) -> EntityState:
        record = self.records.get(entity_id) or _EntityRecord()
        return EntityState(
            entity_id=entity_id,
            task_statuses=dict(record.task_statuses),
            last_activity_at=record.last_activity_at,
            loan_status=record.loan_status,
            evaluated_at=now or utcnow()
        )

    def _record(self, entity_id: str) -> _EntityRecord:
        return self.records.setdefault(entity_id, _EntityRecord())
