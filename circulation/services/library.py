# circulation/services/library.py
from typing import Optional

from circulation.core.config import LibraryPolicy
from circulation.core.events import EventBus
from circulation.core.locks import KeyedLocks
from circulation.repository.base import Repository
from circulation.services.base import ServiceContext
from circulation.services.catalog import Catalog
from circulation.services.directory import RepositoryDirectory
from circulation.services.fines import FineCalculator
from circulation.services.ledger import InventoryLedger
from circulation.services.loans import LoanEngine
from circulation.services.queries import QueryFacade
from circulation.services.reservations import ReservationQueue


class Library:
    """Wires the repository, policy and services into one object per process."""

    def __init__(
        self,
        repo: Repository,
        policy: Optional[LibraryPolicy] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        policy = policy or LibraryPolicy()
        self.repo = repo
        self.policy = policy
        self.bus = bus or EventBus()
        self.ctx = ServiceContext(repo, policy, KeyedLocks(policy.lock_timeout_seconds), self.bus)

        self.directory = RepositoryDirectory(self.ctx)
        self.ledger = InventoryLedger(self.ctx)
        self.fines = FineCalculator(self.ctx, self.directory)
        self.reservations = ReservationQueue(self.ctx, self.ledger, self.directory)
        self.loans = LoanEngine(self.ctx, self.ledger, self.fines, self.reservations, self.directory)
        self.catalog = Catalog(self.ctx, self.reservations)
        self.queries = QueryFacade(repo)
