"""
Condition evaluation for branch steps
"""
import logging
from datetime import timedelta
from typing import Callable, Dict, Optional

from ..models.execution import EntityState
from ..models.flow import ConditionType


logger = logging.getLogger(__name__)


PENDING_TASK_STATUSES = frozenset({"pending", "in_progress", "overdue"})
COMPLETED_TASK_STATUSES = frozenset({"completed", "approved"})


class ConditionEvaluator:
    """Pure evaluation of (condition type, value, entity state) to a boolean"""

    def __init__(self):
        self.evaluators: Dict[str, Callable[[Optional[str], EntityState], bool]] = {
            ConditionType.TASK_COMPLETED.value: self._task_completed,
            ConditionType.TASK_PENDING.value: self._task_pending,
            ConditionType.INACTIVITY_DAYS.value: self._inactivity_days,
            ConditionType.LOAN_STATUS.value: self._loan_status,
        }

    def evaluate(
        self,
        condition_type: str,
        condition_value: Optional[str],
        state: EntityState
    ) -> bool:
        """Unknown kinds and unusable values evaluate to False"""
        evaluator = self.evaluators.get(condition_type)
        if evaluator is None:
            logger.warning(
                f"Unknown condition type '{condition_type}', evaluating as false",
                extra={"entity_id": state.entity_id}
            )
            return False

        result = evaluator(condition_value, state)
        logger.debug(
            f"Condition {condition_type}({condition_value!r}) on {state.entity_id} -> {result}"
        )
        return result

    def _task_completed(self, value: Optional[str], state: EntityState) -> bool:
        # With a task key: that task is done. Without: tasks exist and all are done.
        if value:
            status = state.task_statuses.get(value)
            return status is not None and status.lower() in COMPLETED_TASK_STATUSES
        if not state.task_statuses:
            return False
        return all(s.lower() in COMPLETED_TASK_STATUSES for s in state.task_statuses.values())

    def _task_pending(self, value: Optional[str], state: EntityState) -> bool:
        if value:
            status = state.task_statuses.get(value)
            return status is not None and status.lower() in PENDING_TASK_STATUSES
        return any(s.lower() in PENDING_TASK_STATUSES for s in state.task_statuses.values())

    def _inactivity_days(self, value: Optional[str], state: EntityState) -> bool:
        try:
            days = int(str(value).strip())
        except (TypeError, ValueError):
            logger.warning(
                f"inactivity_days condition value {value!r} is not an integer, evaluating as false",
                extra={"entity_id": state.entity_id}
            )
            return False

        if state.last_activity_at is None:
            # No recorded activity at all counts as inactive
            return True
        return state.evaluated_at - state.last_activity_at >= timedelta(days=days)

    def _loan_status(self, value: Optional[str], state: EntityState) -> bool:
        if value is None or state.loan_status is None:
            return False
        return state.loan_status.strip() == value.strip()
