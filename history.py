"""
Facility status history with a rolling retention window.

`record` and `purge_older_than` are best-effort: a store failure is logged
and the caller carries on, so a status change can stand without its log
entry. `clear_all` is an explicit manager action and its failures propagate.
"""
import logging
import os
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from pymongo.errors import PyMongoError

from database import MongoPersistence, to_millis, utcnow
from schemas import FacilityStatus, TransitionEvent

logger = logging.getLogger(__name__)

RETENTION = timedelta(days=int(os.getenv("HISTORY_RETENTION_DAYS", "30")))

AUTO_ACTOR = "system:auto-mode"


def manual_actor(username: Optional[str]) -> str:
    return f"manual:{username or 'Unknown'}"


class TransitionLog:
    def __init__(self, persistence: MongoPersistence, clock: Callable[[], datetime] = utcnow):
        self.persistence = persistence
        self.clock = clock

    def record(self, facility_id: str, new_state: FacilityStatus, actor: str) -> Optional[TransitionEvent]:
        event = TransitionEvent(
            facility_id=facility_id,
            occurred_at=self.clock(),
            new_state=new_state,
            actor=actor,
        )
        try:
            self.persistence.append_transition(event.model_dump(mode="json"))
        except PyMongoError:
            logger.exception("Failed to log %s transition for facility %s", new_state.value, facility_id)
            return None
        logger.info("Facility %s -> %s by %s", facility_id, new_state.value, actor)
        return event

    def purge_older_than(self, facility_id: str, max_age: timedelta = RETENTION) -> None:
        cutoff = to_millis(self.clock() - max_age)
        try:
            self.persistence.delete_transitions_matching(facility_id, {"occurred_at": {"$lt": cutoff}})
        except PyMongoError:
            logger.exception("Failed to purge history for facility %s", facility_id)

    def clear_all(self, facility_id: str) -> None:
        self.persistence.delete_transitions_matching(facility_id)
        logger.info("History cleared for facility %s", facility_id)

    def list(self, facility_id: str) -> List[TransitionEvent]:
        events = [TransitionEvent(**e) for e in self.persistence.read_transitions(facility_id)]
        return sorted(events, key=lambda e: e.occurred_at, reverse=True)
