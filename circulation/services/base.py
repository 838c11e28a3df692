# circulation/services/base.py
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from pydantic import ValidationError

from circulation.core.config import LibraryPolicy
from circulation.core.errors import ValidationFailed
from circulation.core.events import EventBus
from circulation.core.locks import KeyedLocks
from circulation.repository.base import Repository


class ServiceContext:
    """Collaborators every service shares: store, locks, event bus and policy."""

    def __init__(self, repo: Repository, policy: LibraryPolicy, locks: KeyedLocks, bus: EventBus) -> None:
        self.repo = repo
        self.policy = policy
        self.locks = locks
        self.bus = bus

    @asynccontextmanager
    async def atomic(self, *lock_keys: str) -> AsyncIterator[None]:
        """
        Runs one public operation: locks, then a single transaction.
        Events are published only if the transaction committed.
        """
        async with self.locks.hold(*lock_keys):
            outbox, token = self.bus.open_outbox()
            try:
                async with self.repo.transaction():
                    yield
            finally:
                self.bus.close_outbox(token)
        await self.bus.publish(outbox)


def build(model_cls, **fields):
    """Constructs a model, reporting bad input as a validation error."""
    try:
        return model_cls(**fields)
    except ValidationError as e:
        raise ValidationFailed(f"Invalid {model_cls.__name__}: {e.errors(include_url=False)}") from e


def require_aware(now: datetime) -> datetime:
    """Operation timestamps must carry a timezone; stored timestamps are UTC-aware."""
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValidationFailed(f"Timestamp {now.isoformat()} has no timezone.")
    return now
