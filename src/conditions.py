"""
Condition tracking for VirtualService status.

Conditions are upserted by type. A status write happens only when a
condition is added or its value flips, so repeated passes over a
converged object do not generate status churn.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from models import Condition, ConditionStatus, VirtualService

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class ConditionTracker:
    """Upserts named conditions and persists them through the status path."""

    def __init__(self, store, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utcnow

    def set_condition(
        self, vservice: VirtualService, condition_type: str, status: ConditionStatus
    ) -> bool:
        """
        Set a condition on the object in memory.

        Returns:
            True if the object changed and needs a status write.
        """
        status = ConditionStatus(status)
        condition = vservice.get_condition(condition_type)
        if condition is None:
            vservice.conditions.append(
                Condition(
                    type=condition_type,
                    status=status,
                    last_transition_time=self.clock(),
                )
            )
            return True
        if condition.status == status:
            return False
        condition.status = status
        condition.last_transition_time = self.clock()
        return True

    async def upsert(
        self, vservice: VirtualService, condition_type: str, status: ConditionStatus
    ) -> Optional[VirtualService]:
        """
        Upsert a condition and persist it.

        Returns:
            The object returned by the store after the status write, or None
            if the condition already had the requested value.

        Raises:
            ConflictError: If the object changed since it was read.
        """
        if not self.set_condition(vservice, condition_type, status):
            return None
        updated = await self.store.update_status(vservice)
        logger.debug(
            f"Set condition {getattr(condition_type, 'value', condition_type)}="
            f"{ConditionStatus(status).value} on virtual service {vservice.key}"
        )
        return updated
