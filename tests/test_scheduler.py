# tests/test_scheduler.py
from datetime import timedelta

from circulation.models.enum import ReservationStatus
from circulation.scheduler import jobs
from tests.conftest import T0, days


async def test_sweep_job_expires_lapsed_reservations(library, seed, monkeypatch):
    book = await seed.book()
    item = await seed.item(book)
    borrower = await seed.member("Ann")
    waiting = await seed.member("Bea")
    await library.loans.checkout(item.id, borrower.id, T0)
    reservation = await library.reservations.reserve(book.id, waiting.id, T0 + timedelta(hours=1))

    monkeypatch.setattr(jobs, "utcnow", lambda: T0 + days(40))

    assert await jobs.expire_stale_reservations(library) == 1
    stored = await library.repo.reservations.require(reservation.id)
    assert stored.status == ReservationStatus.EXPIRED
    assert await jobs.expire_stale_reservations(library) == 0
