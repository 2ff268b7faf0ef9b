"""Resource pools and the monthly creation quota.

Account state lives in the record store (``users/{uid}/appState/main``),
never only in memory: several client processes for one account must see
the same balances. Each ``ResourcePoolManager`` is the single owner of
mutations for its account inside a process; every mutation reloads the
stored document, applies, and writes back a partial merge guarded by the
balance it read.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..config import config
from ..db.record_store import RecordStore
from ..enums import MembershipPlan, ResourcePool
from ..errors import WriteConflictError
from .story import Record, utcnow

logger = logging.getLogger(__name__)

MAX_TOKENS = 10
MAX_BOOKMARKS = 3
DAILY_REWARD_AMOUNT = 1
DAILY_REWARD_INTERVAL = timedelta(hours=24)

# Unbounded sentinel, compared but never incremented
UNLIMITED = math.inf

PLAN_LIMITS: dict[MembershipPlan, float] = {
    MembershipPlan.FREE: 1,
    MembershipPlan.EXPLORER: 5,
    MembershipPlan.SCULPTOR: 10,
    MembershipPlan.ADMIN: UNLIMITED,
}

APP_STATE_DOC = "main"
_MAX_WRITE_ATTEMPTS = 3


def app_state_collection(account_id: str) -> str:
    return f"users/{account_id}/appState"


@dataclass(frozen=True)
class PoolPolicy:
    cap: int
    interval: timedelta
    balance_field: str
    anchor_field: str


def default_policies() -> dict[ResourcePool, PoolPolicy]:
    return {
        ResourcePool.TOKENS: PoolPolicy(
            cap=MAX_TOKENS,
            interval=timedelta(seconds=config.TOKEN_REGEN_SECONDS),
            balance_field="tokens",
            anchor_field="last_token_regen",
        ),
        ResourcePool.BOOKMARKS: PoolPolicy(
            cap=MAX_BOOKMARKS,
            interval=timedelta(seconds=config.BOOKMARK_REGEN_SECONDS),
            balance_field="bookmarks",
            anchor_field="last_bookmark_regen",
        ),
    }


def end_of_month(now: datetime) -> datetime:
    """First instant of the next calendar month (the quota reset boundary)."""
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def start_of_week(now: datetime) -> datetime:
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def regenerate(
    balance: int,
    anchor: datetime | None,
    now: datetime,
    cap: int,
    interval: timedelta,
) -> tuple[int, datetime]:
    """Credit whole elapsed intervals since ``anchor``, never beyond ``cap``.

    Pure and idempotent: feeding the result back in with the same ``now``
    returns it unchanged.
    """
    if anchor is None:
        return balance, now
    if balance >= cap or now <= anchor:
        return balance, anchor
    units = int((now - anchor) / interval)
    if units <= 0:
        return balance, anchor
    credited = min(units, cap - balance)
    return balance + credited, anchor + interval * credited


class AccountState(Record):
    """Per-account currencies and counters."""
    account_id: str
    membership_plan: MembershipPlan = MembershipPlan.FREE

    tokens: int = MAX_TOKENS
    last_token_regen: datetime | None = None
    bookmarks: int = MAX_BOOKMARKS
    last_bookmark_regen: datetime | None = None

    monthly_creations: int = 0
    creation_reset_date: datetime | None = None

    chapters_read_this_week: int = 0
    week_start_date: datetime | None = None
    last_daily_reward_claimed: datetime | None = None


class ResourcePoolManager:
    """Gates and mutates one account's pools.

    Usage:
        pools = ResourcePoolManager(store, "user-1")
        if await pools.consume(ResourcePool.TOKENS, 1):
            ...
    """

    def __init__(
        self,
        store: RecordStore,
        account_id: str,
        clock: Callable[[], datetime] | None = None,
        policies: dict[ResourcePool, PoolPolicy] | None = None,
    ):
        self.store = store
        self.account_id = account_id
        self.clock = clock or utcnow
        self.policies = policies or default_policies()
        self.state: AccountState | None = None
        self._lock = asyncio.Lock()
        self.quota = CreationQuota(self)

    @property
    def collection(self) -> str:
        return app_state_collection(self.account_id)

    # ── Loading ──

    async def load(self) -> AccountState:
        """Read the stored account state, creating defaults on first use."""
        doc = await self.store.get(self.collection, APP_STATE_DOC)
        if doc is None:
            now = self.clock()
            fresh = AccountState(
                account_id=self.account_id,
                last_token_regen=now,
                last_bookmark_regen=now,
                creation_reset_date=end_of_month(now),
                week_start_date=start_of_week(now),
            )
            try:
                # Only the first device to get here writes the defaults
                await self.store.set_merge(
                    self.collection, APP_STATE_DOC, fresh.to_document(), expect={"accountId": None}
                )
            except WriteConflictError:
                doc = await self.store.get(self.collection, APP_STATE_DOC)
            else:
                self.state = fresh
                logger.info(f"Created account state for {self.account_id}")
                return self.state
        self.state = AccountState.model_validate(doc)
        # Backfill fields older documents were written without
        missing = {k: v for k, v in self.state.to_document().items() if k not in doc}
        if missing:
            await self.store.set_merge(self.collection, APP_STATE_DOC, missing)
        return self.state

    async def _mutate(self, mutation: Callable[[AccountState, datetime], bool]) -> bool:
        """Reload, apply ``mutation`` and persist the fields it changed.

        The write is guarded by the values read, so a concurrent writer in
        another process forces a reload instead of a lost update.
        """
        async with self._lock:
            for _ in range(_MAX_WRITE_ATTEMPTS):
                state = await self.load()
                before = state.to_document()
                now = self.clock()
                self._apply_regeneration(state, now)
                result = mutation(state, now)
                after = state.to_document()
                changed = {k: v for k, v in after.items() if before.get(k) != v}
                if not changed:
                    return result
                try:
                    await self.store.set_merge(
                        self.collection,
                        APP_STATE_DOC,
                        changed,
                        expect={k: before.get(k) for k in changed},
                    )
                except WriteConflictError as e:
                    logger.info(f"Account {self.account_id} changed underneath us ({e.field}), retrying")
                    continue
                self.state = state
                return result
            raise WriteConflictError(self.collection, APP_STATE_DOC, "*", "stable", "contended")

    def _apply_regeneration(self, state: AccountState, now: datetime) -> None:
        for pool, policy in self.policies.items():
            balance = getattr(state, policy.balance_field)
            anchor = getattr(state, policy.anchor_field)
            new_balance, new_anchor = regenerate(balance, anchor, now, policy.cap, policy.interval)
            if new_balance != balance:
                logger.debug(f"{pool} regenerated {balance} -> {new_balance} for {self.account_id}")
            setattr(state, policy.balance_field, new_balance)
            setattr(state, policy.anchor_field, new_anchor)

    # ── Pools ──

    async def regenerate(self, pool: ResourcePool | None = None) -> int | None:
        """Bring regenerating pools up to date and persist. Returns the pool's balance."""
        await self._mutate(lambda state, now: True)
        if pool is None:
            return None
        return getattr(self.state, self.policies[pool].balance_field)

    async def balance(self, pool: ResourcePool) -> int:
        return await self.regenerate(pool)

    async def consume(self, pool: ResourcePool, amount: int = 1) -> bool:
        """Check-then-debit. False (and no write) when the balance is short."""
        if amount < 0:
            raise ValueError("amount must be non-negative")
        policy = self.policies[pool]

        def _debit(state: AccountState, now: datetime) -> bool:
            balance = getattr(state, policy.balance_field)
            if balance < amount:
                return False
            if balance >= policy.cap:
                # Next unit regenerates a full interval from now
                setattr(state, policy.anchor_field, now)
            setattr(state, policy.balance_field, balance - amount)
            return True

        ok = await self._mutate(_debit)
        if ok:
            logger.info(f"Consumed {amount} {pool} for {self.account_id}")
        return ok

    async def credit(self, pool: ResourcePool, amount: int) -> int:
        """Add units (rewards, purchases). Not limited by the regeneration cap."""
        if amount <= 0:
            return await self.balance(pool)
        policy = self.policies[pool]

        def _credit(state: AccountState, now: datetime) -> bool:
            setattr(state, policy.balance_field, getattr(state, policy.balance_field) + amount)
            return True

        await self._mutate(_credit)
        logger.info(f"Credited {amount} {pool} to {self.account_id}")
        return getattr(self.state, policy.balance_field)

    async def refill(self, pool: ResourcePool) -> None:
        policy = self.policies[pool]

        def _refill(state: AccountState, now: datetime) -> bool:
            if getattr(state, policy.balance_field) < policy.cap:
                setattr(state, policy.balance_field, policy.cap)
            setattr(state, policy.anchor_field, now)
            return True

        await self._mutate(_refill)

    async def claim_daily_reward(self) -> bool:
        """One free token per 24 hours."""

        def _claim(state: AccountState, now: datetime) -> bool:
            last = state.last_daily_reward_claimed
            if last is not None and now - last < DAILY_REWARD_INTERVAL:
                return False
            state.tokens += DAILY_REWARD_AMOUNT
            state.last_daily_reward_claimed = now
            return True

        return await self._mutate(_claim)

    async def record_chapter_read(self) -> int:
        def _count(state: AccountState, now: datetime) -> bool:
            week = start_of_week(now)
            if state.week_start_date is None or state.week_start_date < week:
                state.week_start_date = week
                state.chapters_read_this_week = 0
            state.chapters_read_this_week += 1
            return True

        await self._mutate(_count)
        return self.state.chapters_read_this_week

    async def set_plan(self, plan: MembershipPlan) -> None:
        def _set(state: AccountState, now: datetime) -> bool:
            state.membership_plan = plan
            return True

        await self._mutate(_set)

    @property
    def plan(self) -> MembershipPlan:
        return self.state.membership_plan if self.state else MembershipPlan.FREE


class CreationQuota:
    """Monthly story-creation allowance per membership plan."""

    def __init__(self, manager: ResourcePoolManager):
        self.manager = manager

    @staticmethod
    def _roll_over(state: AccountState, now: datetime) -> None:
        if state.creation_reset_date is None or now >= state.creation_reset_date:
            state.monthly_creations = 0
            state.creation_reset_date = end_of_month(now)

    async def check(self, plan: MembershipPlan | None = None) -> bool:
        """True while this month's creations are below the plan's limit."""

        def _check(state: AccountState, now: datetime) -> bool:
            self._roll_over(state, now)
            limit = PLAN_LIMITS[plan or state.membership_plan]
            return state.monthly_creations < limit

        return await self.manager._mutate(_check)

    async def increment(self) -> int:
        """Count one successfully created story."""

        def _increment(state: AccountState, now: datetime) -> bool:
            self._roll_over(state, now)
            state.monthly_creations += 1
            return True

        await self.manager._mutate(_increment)
        return self.manager.state.monthly_creations

    async def try_reserve(self, plan: MembershipPlan | None = None) -> bool:
        """Check and count one creation in a single guarded write.

        Returns False (nothing counted) when the limit is reached. Pair a
        successful reservation with ``release()`` if the creation then fails.
        """

        def _reserve(state: AccountState, now: datetime) -> bool:
            self._roll_over(state, now)
            if state.monthly_creations >= PLAN_LIMITS[plan or state.membership_plan]:
                return False
            state.monthly_creations += 1
            return True

        return await self.manager._mutate(_reserve)

    async def release(self) -> int:
        """Give back a reservation whose creation failed."""

        def _release(state: AccountState, now: datetime) -> bool:
            state.monthly_creations = max(0, state.monthly_creations - 1)
            return True

        await self.manager._mutate(_release)
        return self.manager.state.monthly_creations

    def limit(self, plan: MembershipPlan | None = None) -> float:
        return PLAN_LIMITS[plan or self.manager.plan]
