"""
Assembles the engine, booking service and API around a store.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from pendulum import DateTime

from ..adapters.cache import CacheProtocol
from ..adapters.job_queue import InMemoryJobQueue, JobQueueProtocol
from ..adapters.store import BookingStoreProtocol
from ..config import BookingSettings
from .api import BookingApi
from .availability_engine import AvailabilityEngine
from .booking_service import BookingService
from .soft_locks import SoftLockService


@dataclass
class BookingComponents:
    store: BookingStoreProtocol
    engine: AvailabilityEngine
    bookings: BookingService
    soft_locks: SoftLockService
    job_queue: JobQueueProtocol
    api: BookingApi


def build_components(
    store: BookingStoreProtocol,
    settings: BookingSettings,
    *,
    clock: Optional[Callable[[], DateTime]] = None,
    cache: Optional[CacheProtocol] = None,
    job_queue: Optional[JobQueueProtocol] = None,
) -> BookingComponents:
    """
    Wire everything for one store.

    Held slots are hidden from availability reads, and when the store
    publishes change events the engine's cache follows them.
    """
    queue = job_queue if job_queue is not None else InMemoryJobQueue()
    soft_locks = SoftLockService(settings, clock=clock)
    engine = AvailabilityEngine(
        store,
        settings,
        cache=cache,
        clock=clock,
        slot_filters=[soft_locks.as_slot_filter()],
    )

    subscribe = getattr(store, "subscribe", None)
    if subscribe is not None:
        subscribe(engine.record_changed)

    bookings = BookingService(store, engine, queue, soft_locks=soft_locks)

    return BookingComponents(
        store=store,
        engine=engine,
        bookings=bookings,
        soft_locks=soft_locks,
        job_queue=queue,
        api=BookingApi(engine, bookings),
    )
