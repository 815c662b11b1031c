"""
Drives automatic mode and restock timers.

FacilityStore holds the current facilities as an immutable snapshot and only
changes through typed messages. AutoModeDriver runs the two ticks against
that snapshot and pushes the resulting side effects to persistence.
Persistence is best-effort: a failed write is logged and the in-memory
change stands until the next refresh. Status changes from staff and from
the schedule are last-write-wins, each with its own history entry.
"""
import asyncio
import contextlib
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from pymongo.errors import PyMongoError

import restock
import scheduling
from database import MongoPersistence, to_millis, utcnow
from history import AUTO_ACTOR, TransitionLog, manual_actor
from schemas import Facility, FacilityStatus

logger = logging.getLogger(__name__)

SCHEDULE_TICK_SECONDS = float(os.getenv("SCHEDULE_TICK_SECONDS", "60"))
RESTOCK_TICK_SECONDS = float(os.getenv("RESTOCK_TICK_SECONDS", "1"))


# -------------------------------
# Store
# -------------------------------

@dataclass(frozen=True)
class FacilitiesLoaded:
    facilities: Tuple[Facility, ...]


@dataclass(frozen=True)
class FacilityChanged:
    facility: Facility


@dataclass(frozen=True)
class FacilityRemoved:
    facility_id: str


StoreMessage = Union[FacilitiesLoaded, FacilityChanged, FacilityRemoved]


class FacilityStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._by_id: Dict[str, Facility] = {}
        self._snapshot: Tuple[Facility, ...] = ()

    def apply(self, message: StoreMessage) -> None:
        with self._lock:
            if isinstance(message, FacilitiesLoaded):
                self._by_id = {f.id: f for f in message.facilities}
            elif isinstance(message, FacilityChanged):
                self._by_id = {**self._by_id, message.facility.id: message.facility}
            elif isinstance(message, FacilityRemoved):
                self._by_id = {k: v for k, v in self._by_id.items() if k != message.facility_id}
            else:
                raise TypeError(f"Unknown store message: {message!r}")
            self._snapshot = tuple(self._by_id.values())

    def snapshot(self) -> Tuple[Facility, ...]:
        return self._snapshot

    def get(self, facility_id: str) -> Optional[Facility]:
        return self._by_id.get(facility_id)


# -------------------------------
# Driver
# -------------------------------

class AutoModeDriver:
    def __init__(self, persistence: MongoPersistence, store: Optional[FacilityStore] = None,
                 clock: Callable[[], datetime] = utcnow, log: Optional[TransitionLog] = None):
        self.persistence = persistence
        self.store = store or FacilityStore()
        self.clock = clock
        self.log = log or TransitionLog(persistence, lambda: self.clock())

    def refresh(self) -> None:
        try:
            docs = self.persistence.read_facilities()
        except PyMongoError:
            logger.exception("Could not read facilities; keeping the last snapshot")
            return
        facilities = []
        for doc in docs:
            try:
                facilities.append(Facility(**doc))
            except ValidationError:
                logger.warning("Skipping malformed facility document %s", doc.get("_id"))
        self.store.apply(FacilitiesLoaded(tuple(facilities)))

    def _apply_status(self, facility: Facility, is_open: bool, actor: str) -> Facility:
        updated = facility.model_copy(update={"is_open": is_open})
        self.store.apply(FacilityChanged(updated))
        try:
            self.persistence.write_facility(facility.id, {"is_open": is_open})
        except PyMongoError:
            logger.exception("Failed to persist status of facility %s", facility.id)
        self.log.record(facility.id, FacilityStatus.from_bool(is_open), actor)
        return updated

    def set_status(self, facility: Facility, is_open: bool, username: Optional[str]) -> Facility:
        """Manual open/close. Logs a transition only when the state changes."""
        if facility.is_open == is_open:
            self.store.apply(FacilityChanged(facility))
            return facility
        return self._apply_status(facility, is_open, manual_actor(username))

    def schedule_tick(self, now: Optional[datetime] = None) -> List[str]:
        """Evaluate every automatic facility; returns ids of those that changed."""
        now = now or self.clock()
        self.refresh()
        changed = []
        for facility in self.store.snapshot():
            if not facility.is_automatic:
                continue
            desired = scheduling.evaluate(facility.business_hours, now)
            if desired is None:
                continue
            is_open = desired == FacilityStatus.OPEN
            if is_open == facility.is_open:
                continue
            self._apply_status(facility, is_open, AUTO_ACTOR)
            changed.append(facility.id)
        return changed

    def restock_tick(self, now: Optional[datetime] = None) -> List[str]:
        """Bring back items whose restock time has passed; returns facility ids touched.

        Only the due items are flipped in storage, so catalog edits made since
        the last refresh survive.
        """
        now = now or self.clock()
        touched = []
        for facility in self.store.snapshot():
            due = [item.id for item in facility.items if restock.is_due(item, now)]
            if not due:
                continue
            items = restock.tick(facility.items, now)
            self.store.apply(FacilityChanged(facility.model_copy(update={"items": items})))
            try:
                self.persistence.restock_items(facility.id, due, to_millis(now))
            except PyMongoError:
                logger.exception("Failed to persist restock for facility %s", facility.id)
            touched.append(facility.id)
        return touched


# -------------------------------
# Periodic ticks
# -------------------------------

class PeriodicTick:
    """Runs `callback` every `interval` seconds on the running event loop.

    The callback runs in a worker thread so blocking database calls do not
    stall the loop. `stop()` (or leaving `async with`) cancels the task.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], object]):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"tick:{self.name}")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while True:
            try:
                await asyncio.to_thread(self.callback)
            except Exception:
                logger.exception("%s tick failed", self.name)
            # fixed rate: the callback's own run time does not push later ticks back
            next_at += self.interval
            now = loop.time()
            if next_at < now - self.interval:
                logger.warning("%s tick fell behind by %.1fs", self.name, now - next_at)
                next_at = now
            await asyncio.sleep(max(0.0, next_at - now))

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def __aenter__(self) -> "PeriodicTick":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
