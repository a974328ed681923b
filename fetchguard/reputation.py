"""IP reputation aggregation and risk tiering"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Union

from loguru import logger

from .config import (
    CRITICAL_RISK_BLOCK_MINUTES,
    CRITICAL_RISK_THRESHOLD,
    HIGH_RISK_BLOCK_MINUTES,
    HIGH_RISK_THRESHOLD,
    MEDIUM_RISK_THRESHOLD,
)
from .models import (
    IPReputationRecord,
    ReputationStats,
    RiskLevel,
    ViolationEvent,
    ViolationKind,
)
from .storage import ReputationStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RiskPolicy:
    """
    Thresholds mapping the total violation count to a risk tier.

    A tier applies once the total reaches its threshold; the highest tier
    reached wins. High and critical tiers block the address for the
    configured duration.
    """

    medium_threshold: int = MEDIUM_RISK_THRESHOLD
    high_threshold: int = HIGH_RISK_THRESHOLD
    critical_threshold: int = CRITICAL_RISK_THRESHOLD
    high_block: timedelta = field(default_factory=lambda: timedelta(minutes=HIGH_RISK_BLOCK_MINUTES))
    critical_block: timedelta = field(
        default_factory=lambda: timedelta(minutes=CRITICAL_RISK_BLOCK_MINUTES)
    )

    def __post_init__(self):
        if not 0 < self.medium_threshold <= self.high_threshold <= self.critical_threshold:
            raise ValueError(
                "Risk thresholds must satisfy 0 < medium <= high <= critical, got "
                f"{self.medium_threshold}/{self.high_threshold}/{self.critical_threshold}"
            )

    def tier_for(self, total_violations: int) -> RiskLevel:
        if total_violations >= self.critical_threshold:
            return RiskLevel.CRITICAL
        if total_violations >= self.high_threshold:
            return RiskLevel.HIGH
        if total_violations >= self.medium_threshold:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def block_duration(self, level: RiskLevel) -> Optional[timedelta]:
        if level is RiskLevel.CRITICAL:
            return self.critical_block
        if level is RiskLevel.HIGH:
            return self.high_block
        return None


class ReputationAggregator:
    """
    Maintains one reputation record per network address.

    Violations for the same address are applied one at a time so concurrent
    reports never lose increments. Read queries never write to the store.
    """

    def __init__(
        self,
        store: ReputationStore,
        policy: Optional[RiskPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.policy = policy or RiskPolicy()
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _address_lock(self, address: str):
        lock = self._locks.setdefault(address, asyncio.Lock())
        self._lock_users[address] = self._lock_users.get(address, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Dropped once no coroutine holds or awaits it
            self._lock_users[address] -= 1
            if not self._lock_users[address]:
                del self._lock_users[address]
                del self._locks[address]

    async def apply_violation(
        self, address: str, kind: Union[ViolationKind, str]
    ) -> IPReputationRecord:
        """Record one violation for ``address`` and return the updated record"""
        if not address:
            raise ValueError("address is required")
        kind = ViolationKind(kind)

        async with self._address_lock(address):
            now = self.clock()
            record = await self.store.get(address)
            if record is None:
                record = IPReputationRecord(address=address, first_seen_at=now)
                logger.info(f"Tracking new address {address}")

            if kind is ViolationKind.FAILED_AUTH:
                record.failed_auth_attempts += 1
            elif kind is ViolationKind.RATE_LIMIT_VIOLATION:
                record.rate_limit_violations += 1
            else:
                record.suspicious_patterns += 1

            record.last_seen_at = now
            record.last_violation_at = now
            previous = record.risk_level
            self._derive(record, now)
            await self.store.save(record)

        if record.risk_level is not previous:
            logger.warning(
                f"Address {address} risk {previous.value} → {record.risk_level.value} "
                f"({record.total_violations} violations)"
            )
        if record.blocked_until is not None and record.risk_level >= RiskLevel.HIGH:
            logger.warning(f"Address {address} blocked until {record.blocked_until.isoformat()}")

        return record

    async def ingest(self, event: ViolationEvent) -> IPReputationRecord:
        return await self.apply_violation(event.address, event.kind)

    async def get(self, address: str) -> Optional[IPReputationRecord]:
        return await self.store.get(address)

    async def list_records(
        self, risk_level: Optional[RiskLevel] = None, blocked_only: bool = False
    ) -> List[IPReputationRecord]:
        """Records ordered from most to fewest violations"""
        now = self.clock()
        records = await self.store.list_records()
        if risk_level is not None:
            records = [r for r in records if r.risk_level is risk_level]
        if blocked_only:
            records = [r for r in records if r.is_blocked(now)]
        return sorted(records, key=lambda r: (-r.total_violations, r.address))

    async def stats(self) -> ReputationStats:
        now = self.clock()
        stats = ReputationStats()
        for record in await self.store.list_records():
            stats.total_addresses += 1
            stats.total_violations += record.total_violations
            stats.risk_distribution[record.risk_level] += 1
            if record.is_blocked(now):
                stats.blocked += 1
            if record.risk_level >= RiskLevel.HIGH:
                stats.high_risk += 1
            if record.risk_level is RiskLevel.CRITICAL:
                stats.critical += 1
        return stats

    async def unblock(self, address: str) -> Optional[IPReputationRecord]:
        async with self._address_lock(address):
            record = await self.store.get(address)
            if record is None:
                return None
            record.blocked_until = None
            await self.store.save(record)
        logger.info(f"Address {address} unblocked")
        return record

    async def reset(self, address: str) -> Optional[IPReputationRecord]:
        """Administrative reset: counters back to zero, low risk, no block"""
        async with self._address_lock(address):
            record = await self.store.get(address)
            if record is None:
                return None
            record.failed_auth_attempts = 0
            record.rate_limit_violations = 0
            record.suspicious_patterns = 0
            record.risk_level = RiskLevel.LOW
            record.blocked_until = None
            await self.store.save(record)
        logger.info(f"Address {address} reputation reset")
        return record

    async def delete(self, address: str) -> bool:
        async with self._address_lock(address):
            removed = await self.store.delete(address)
        if removed:
            logger.info(f"Address {address} removed from tracking")
        return removed

    def _derive(self, record: IPReputationRecord, now: datetime) -> None:
        record.risk_level = self.policy.tier_for(record.total_violations)
        duration = self.policy.block_duration(record.risk_level)
        if duration is None:
            return
        until = now + duration
        # Blocks are only ever extended, never shortened
        if record.blocked_until is None or record.blocked_until < until:
            record.blocked_until = until
