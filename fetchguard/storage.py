"""Keyed stores for IP reputation records"""

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import orjson
from dateutil.parser import isoparse
from loguru import logger

from .models import IPReputationRecord, RiskLevel

_TIMESTAMP_FIELDS = ("blocked_until", "first_seen_at", "last_seen_at", "last_violation_at")


def record_from_dict(raw: Dict[str, Any]) -> IPReputationRecord:
    """Rebuild a record from its stored JSON form"""
    timestamps = {
        name: isoparse(raw[name]) if raw.get(name) else None for name in _TIMESTAMP_FIELDS
    }
    return IPReputationRecord(
        address=raw["address"],
        failed_auth_attempts=int(raw.get("failed_auth_attempts", 0)),
        rate_limit_violations=int(raw.get("rate_limit_violations", 0)),
        suspicious_patterns=int(raw.get("suspicious_patterns", 0)),
        risk_level=RiskLevel(raw.get("risk_level", RiskLevel.LOW.value)),
        **timestamps,
    )


class ReputationStore:
    """
    Keyed store of reputation records, one per address.

    Implementations hand out copies: mutating a returned record has no effect
    until it is passed back to ``save``.
    """

    async def get(self, address: str) -> Optional[IPReputationRecord]:
        raise NotImplementedError

    async def save(self, record: IPReputationRecord) -> None:
        raise NotImplementedError

    async def delete(self, address: str) -> bool:
        raise NotImplementedError

    async def list_records(self) -> List[IPReputationRecord]:
        raise NotImplementedError


class InMemoryReputationStore(ReputationStore):
    """Dictionary-backed store for tests and single-process use"""

    def __init__(self):
        self._records: Dict[str, IPReputationRecord] = {}

    async def get(self, address: str) -> Optional[IPReputationRecord]:
        record = self._records.get(address)
        return replace(record) if record else None

    async def save(self, record: IPReputationRecord) -> None:
        self._records[record.address] = replace(record)

    async def delete(self, address: str) -> bool:
        return self._records.pop(address, None) is not None

    async def list_records(self) -> List[IPReputationRecord]:
        return [replace(r) for r in self._records.values()]


class JsonFileReputationStore(ReputationStore):
    """
    Store persisted as a single JSON document.

    The document is loaded once, kept in memory, and rewritten in full after
    every mutation. Uses aiofiles so writes never block the event loop and
    orjson for serialization.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._records: Optional[Dict[str, IPReputationRecord]] = None
        self.lock = asyncio.Lock()

    async def get(self, address: str) -> Optional[IPReputationRecord]:
        async with self.lock:
            records = await self._load()
            record = records.get(address)
            return replace(record) if record else None

    async def save(self, record: IPReputationRecord) -> None:
        async with self.lock:
            records = dict(await self._load())
            records[record.address] = replace(record)
            await self._flush(records)
            self._records = records

    async def delete(self, address: str) -> bool:
        async with self.lock:
            records = dict(await self._load())
            if records.pop(address, None) is None:
                return False
            await self._flush(records)
            self._records = records
            return True

    async def list_records(self) -> List[IPReputationRecord]:
        async with self.lock:
            records = await self._load()
            return [replace(r) for r in records.values()]

    async def _load(self) -> Dict[str, IPReputationRecord]:
        if self._records is not None:
            return self._records

        if not self.path.exists():
            logger.debug(f"No reputation file at {self.path}, starting empty")
            self._records = {}
            return self._records

        async with aiofiles.open(self.path, "rb") as f:
            content = await f.read()

        document = orjson.loads(content) if content else {}
        self._records = {
            raw["address"]: record_from_dict(raw) for raw in document.get("records", [])
        }
        logger.debug(f"Loaded {len(self._records)} reputation records from {self.path}")
        return self._records

    async def _flush(self, records: Dict[str, IPReputationRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {"records": [r.to_dict() for r in records.values()]}
        json_bytes = orjson.dumps(document, option=orjson.OPT_INDENT_2)

        async with aiofiles.open(self.path, "wb") as f:
            await f.write(json_bytes)

        logger.debug(f"💾 Saved {len(records)} reputation records to {self.path.name}")
