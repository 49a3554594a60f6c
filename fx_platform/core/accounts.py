"""
Balance store with explicit, scoped transactions.

An ``AccountTransaction`` locks one account row, collects debits and credits
in memory and writes them in a single commit. Nothing is visible to other
sessions before ``commit()``; leaving the ``async with`` block without
committing rolls back. The row lock is released on every exit path.

The row lock has two layers:
- a per-account ``asyncio.Lock`` serializing work inside this process
- ``SELECT ... FOR UPDATE`` serializing across processes on engines that
  support row locks (PostgreSQL); SQLite ignores it

The commit also compares ``lock_version`` with the value read at the start
of the transaction, so a write based on a stale snapshot is rejected.
"""
import asyncio
import time
import weakref
from dataclasses import dataclass, field
from decimal import Decimal
from types import TracebackType
from typing import Dict, Mapping, Optional, Type

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fx_platform.core.money import ZERO, Currency, round_half_up
from fx_platform.database.models import Account, utcnow
from fx_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class AccountError(Exception):
    """Base exception for balance store errors."""

    pass


class AccountNotFoundError(AccountError):
    """Raised when no account exists for a user."""

    def __init__(self, user_id: int):
        super().__init__(f"Account not found for user {user_id}")
        self.user_id = user_id


class AccountAlreadyExistsError(AccountError):
    """Raised when opening a second account for the same user."""

    def __init__(self, user_id: int):
        super().__init__(f"Account already exists for user {user_id}")
        self.user_id = user_id


class NegativeBalanceError(AccountError):
    """Raised when a commit would leave a balance below zero."""

    def __init__(self, currency: Currency, balance: Decimal):
        super().__init__(f"{currency.value} balance would become {balance}")
        self.currency = currency
        self.balance = balance


class StaleAccountError(AccountError):
    """Raised when the account changed since the transaction read it."""

    def __init__(self, user_id: int, expected_version: int):
        super().__init__(
            f"Account for user {user_id} was modified concurrently "
            f"(expected lock_version {expected_version})"
        )
        self.user_id = user_id
        self.expected_version = expected_version


@dataclass(frozen=True)
class AccountSnapshot:
    """Immutable view of an account row."""

    user_id: int
    balances: Mapping[Currency, Decimal]
    lock_version: int

    @classmethod
    def from_row(cls, account: Account) -> "AccountSnapshot":
        return cls(
            user_id=account.user_id,
            balances=dict(account.balances),
            lock_version=account.lock_version,
        )

    def balance(self, currency: Currency) -> Decimal:
        return self.balances[Currency(currency)]


@dataclass
class _PendingChanges:
    deltas: Dict[Currency, Decimal] = field(default_factory=dict)

    def add(self, currency: Currency, delta: Decimal) -> None:
        self.deltas[currency] = self.deltas.get(currency, ZERO) + delta


class AccountTransaction:
    """
    Unit of work over a single account.

    Usage:
        async with store.begin() as tx:
            account = await tx.lock_account(user_id)
            tx.debit(Currency.USD, amount)
            tx.credit(Currency.NGN, converted)
            await tx.commit()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        row_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]",
    ):
        self._session_factory = session_factory
        self._row_locks = row_locks
        self._session: Optional[AsyncSession] = None
        self._lock: Optional[asyncio.Lock] = None
        self._snapshot: Optional[AccountSnapshot] = None
        self._pending = _PendingChanges()
        self._finished = False

    async def __aenter__(self) -> "AccountTransaction":
        self._session = self._session_factory()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        try:
            if not self._finished:
                await self.abort()
        finally:
            if self._session is not None:
                await self._session.close()
            self._release_lock()

    @property
    def snapshot(self) -> AccountSnapshot:
        if self._snapshot is None:
            raise RuntimeError("No account locked in this transaction")
        return self._snapshot

    def _release_lock(self) -> None:
        if self._lock is not None and self._lock.locked():
            self._lock.release()
        self._lock = None

    async def lock_account(self, user_id: int) -> AccountSnapshot:
        """
        Lock the account row for ``user_id`` until the transaction ends.

        Raises:
            AccountNotFoundError: If the user has no account
        """
        if self._snapshot is not None:
            raise RuntimeError("Transaction already holds an account lock")

        lock = self._row_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._row_locks[user_id] = lock

        wait_started = time.perf_counter()
        await lock.acquire()
        self._lock = lock
        metrics.record_lock_wait(time.perf_counter() - wait_started)

        stmt = select(Account).where(Account.user_id == user_id).with_for_update()
        result = await self._session.execute(stmt)
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(user_id)

        self._snapshot = AccountSnapshot.from_row(account)
        logger.debug(
            "account_locked",
            user_id=user_id,
            lock_version=account.lock_version,
        )
        return self._snapshot

    def debit(self, currency: Currency, amount: Decimal) -> None:
        self._pending.add(Currency(currency), -amount)

    def credit(self, currency: Currency, amount: Decimal) -> None:
        self._pending.add(Currency(currency), amount)

    async def commit(self) -> AccountSnapshot:
        """
        Write the accumulated changes and release the lock.

        Returns:
            AccountSnapshot: The account after the commit

        Raises:
            NegativeBalanceError: If a balance would go below zero
            StaleAccountError: If ``lock_version`` moved since the read
        """
        snapshot = self.snapshot
        balances = dict(snapshot.balances)
        for currency, delta in self._pending.deltas.items():
            balances[currency] = round_half_up(balances[currency] + delta)
            if balances[currency] < ZERO:
                raise NegativeBalanceError(currency, balances[currency])

        values = {
            Account.BALANCE_COLUMNS[currency]: amount for currency, amount in balances.items()
        }
        stmt = (
            update(Account)
            .where(Account.user_id == snapshot.user_id)
            .where(Account.lock_version == snapshot.lock_version)
            .values(lock_version=Account.lock_version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise StaleAccountError(snapshot.user_id, snapshot.lock_version)

        await self._session.commit()
        self._finished = True
        self._release_lock()

        committed = AccountSnapshot(
            user_id=snapshot.user_id,
            balances=balances,
            lock_version=snapshot.lock_version + 1,
        )
        logger.debug(
            "account_committed",
            user_id=snapshot.user_id,
            lock_version=committed.lock_version,
        )
        return committed

    async def abort(self) -> None:
        """Discard pending changes and release the lock."""
        self._pending = _PendingChanges()
        self._finished = True
        try:
            if self._session is not None:
                await self._session.rollback()
        finally:
            self._release_lock()


class AccountStore:
    """Reads, opens and transacts on accounts."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._row_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def begin(self) -> AccountTransaction:
        """Start a scoped transaction; use with ``async with``."""
        return AccountTransaction(self._session_factory, self._row_locks)

    async def create_account(
        self,
        user_id: int,
        initial_balances: Optional[Mapping[Currency, Decimal]] = None,
    ) -> AccountSnapshot:
        """
        Open an account with seeded balances.

        Raises:
            AccountAlreadyExistsError: If the user already has an account
            ValueError: If a seeded balance is negative
        """
        seeded = {currency: ZERO for currency in Currency}
        for currency, amount in (initial_balances or {}).items():
            amount = round_half_up(Decimal(amount))
            if amount < ZERO:
                raise ValueError("Initial balance cannot be negative")
            seeded[Currency(currency)] = amount

        account = Account(
            user_id=user_id,
            lock_version=0,
            **{Account.BALANCE_COLUMNS[c]: amount for c, amount in seeded.items()},
        )
        async with self._session_factory() as session:
            session.add(account)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise AccountAlreadyExistsError(user_id) from e

        logger.info(
            "account_created",
            user_id=user_id,
            balances={c.value: str(a) for c, a in seeded.items()},
        )
        return AccountSnapshot(user_id=user_id, balances=seeded, lock_version=0)

    async def get_account(self, user_id: int) -> AccountSnapshot:
        """
        Read an account without locking it.

        Raises:
            AccountNotFoundError: If the user has no account
        """
        async with self._session_factory() as session:
            result = await session.execute(select(Account).where(Account.user_id == user_id))
            account = result.scalar_one_or_none()
            if account is None:
                raise AccountNotFoundError(user_id)
            return AccountSnapshot.from_row(account)
