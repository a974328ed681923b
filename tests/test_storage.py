from pathlib import Path

import orjson
import pytest

from fetchguard.models import ViolationKind
from fetchguard.reputation import ReputationAggregator
from fetchguard.storage import InMemoryReputationStore, JsonFileReputationStore


@pytest.mark.asyncio
async def test_json_store_persists_records_across_instances(tmp_path: Path, clock):
    path = tmp_path / "data" / "ip_reputation.json"
    aggregator = ReputationAggregator(JsonFileReputationStore(path), clock=clock)
    for _ in range(5):
        await aggregator.apply_violation("203.0.113.5", ViolationKind.FAILED_AUTH)

    assert path.exists(), "Store file should be created on first write"
    document = orjson.loads(path.read_bytes())
    assert document["records"][0]["risk_level"] == "high"

    reloaded = await JsonFileReputationStore(path).get("203.0.113.5")
    assert reloaded.failed_auth_attempts == 5
    assert reloaded.blocked_until is not None and reloaded.blocked_until > clock.now
    assert reloaded == await aggregator.get("203.0.113.5")
    assert reloaded.first_seen_at == clock.now


@pytest.mark.asyncio
async def test_json_store_missing_file_is_empty(tmp_path: Path):
    store = JsonFileReputationStore(tmp_path / "absent.json")

    assert await store.list_records() == []
    assert await store.get("192.0.2.1") is None
    assert not await store.delete("192.0.2.1")
    assert not (tmp_path / "absent.json").exists(), "Reads never create the file"


@pytest.mark.asyncio
async def test_json_store_delete_rewrites_file(tmp_path: Path, clock):
    path = tmp_path / "ip_reputation.json"
    aggregator = ReputationAggregator(JsonFileReputationStore(path), clock=clock)
    await aggregator.apply_violation("192.0.2.1", ViolationKind.SUSPICIOUS_PATTERN)
    await aggregator.apply_violation("192.0.2.2", ViolationKind.SUSPICIOUS_PATTERN)

    assert await aggregator.delete("192.0.2.1")

    addresses = [r.address for r in await JsonFileReputationStore(path).list_records()]
    assert addresses == ["192.0.2.2"]


@pytest.mark.asyncio
async def test_store_returns_copies(clock):
    store = InMemoryReputationStore()
    aggregator = ReputationAggregator(store, clock=clock)
    await aggregator.apply_violation("192.0.2.1", ViolationKind.FAILED_AUTH)

    record = await store.get("192.0.2.1")
    record.failed_auth_attempts = 99

    assert (await store.get("192.0.2.1")).failed_auth_attempts == 1


@pytest.mark.asyncio
async def test_json_store_failed_write_keeps_previous_records(tmp_path: Path, clock, monkeypatch):
    path = tmp_path / "ip_reputation.json"
    store = JsonFileReputationStore(path)
    aggregator = ReputationAggregator(store, clock=clock)
    await aggregator.apply_violation("192.0.2.1", ViolationKind.FAILED_AUTH)

    async def failing_flush(records):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_flush", failing_flush)

    with pytest.raises(OSError):
        await aggregator.apply_violation("192.0.2.1", ViolationKind.FAILED_AUTH)
    with pytest.raises(OSError):
        await aggregator.delete("192.0.2.1")

    record = await store.get("192.0.2.1")
    assert record.failed_auth_attempts == 1, "Memory must match what is on disk"
    assert (await JsonFileReputationStore(path).get("192.0.2.1")) == record
