# circulation/scheduler/jobs.py
import logging

from circulation.core.errors import CirculationError
from circulation.core.utils import utcnow
from circulation.services.library import Library

logger = logging.getLogger("scheduler_jobs")


async def expire_stale_reservations(library: Library) -> int:
    """Periodic sweep: lapsed queue entries and uncollected holds become Expired."""
    now_utc = utcnow()
    logger.info(f"Running expire_stale_reservations job at {now_utc}")
    try:
        expired = await library.reservations.expire_stale_reservations(now_utc)
    except CirculationError as e:
        # next run picks up whatever this one could not finish
        logger.warning(f"Reservation sweep stopped early ({e.code}): {e.message}")
        return 0
    logger.info(f"Job finished. Expired: {expired}")
    return expired
