import json
from datetime import datetime, timedelta, timezone

import pytest

from clanhall_core.constants import SNAPSHOT_SCHEMA_VERSION
from clanhall_core.errors import SnapshotFormatError, SnapshotNotFoundError
from clanhall_core.platform import LiveChannel, LiveRole, Overwrite
from clanhall_core.snapshots import Snapshot, SnapshotStore, capture_snapshot, new_snapshot_id

GUILD = 555


def _snapshot(snapshot_id: str, created_at: datetime, workspace_id: int = GUILD) -> Snapshot:
    category = LiveChannel(id=10, name="GENERAL", kind="category", position=0)
    channel = LiveChannel(
        id=11,
        name="general",
        kind="text",
        position=0,
        parent_id=10,
        topic="chat",
        overwrites=(Overwrite(subject_id=20, allow=1024, deny=2048),),
    )
    role = LiveRole(id=20, name="Member", position=3, color=0x3498DB, hoist=True)
    return Snapshot(
        snapshot_id=snapshot_id,
        workspace_id=workspace_id,
        workspace_name="Test Clan",
        created_at=created_at,
        categories=(category,),
        channels=(channel,),
        roles=(role,),
    )


def test_snapshot_dict_keeps_references():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    snapshot = _snapshot("20240501-000000-abcd1234", now)

    data = snapshot.to_dict()

    assert data["schema_version"] == SNAPSHOT_SCHEMA_VERSION
    assert data["channels"][0]["parent_id"] == 10
    assert data["channels"][0]["overwrites"] == [
        {"subject_id": 20, "allow": 1024, "deny": 2048, "subject_type": "role"}
    ]
    assert Snapshot.from_dict(data) == snapshot


def test_untagged_blob_reads_as_version_one():
    data = _snapshot("legacy", datetime(2024, 5, 1, tzinfo=timezone.utc)).to_dict()
    del data["schema_version"]

    snapshot = Snapshot.from_dict(data)

    assert snapshot.schema_version == 1
    assert snapshot.roles[0].name == "Member"


def test_newer_schema_version_is_rejected():
    data = _snapshot("future", datetime(2024, 5, 1, tzinfo=timezone.utc)).to_dict()
    data["schema_version"] = SNAPSHOT_SCHEMA_VERSION + 1

    with pytest.raises(SnapshotFormatError) as excinfo:
        Snapshot.from_dict(data)

    assert excinfo.value.actionable_suggestion


def test_malformed_blob_is_rejected():
    with pytest.raises(SnapshotFormatError):
        Snapshot.from_dict({"schema_version": 1, "snapshot_id": "x"})


def test_new_snapshot_id_sorts_by_time():
    earlier = new_snapshot_id(datetime(2024, 1, 1, tzinfo=timezone.utc))
    later = new_snapshot_id(datetime(2024, 1, 2, tzinfo=timezone.utc))

    assert earlier.startswith("20240101-000000-")
    assert earlier < later


@pytest.mark.asyncio
async def test_capture_excludes_everyone_role(platform):
    category = platform.add_category("GENERAL")
    platform.add_channel("general", category.id)
    platform.add_role("Leader")
    platform.roles[platform.everyone_id] = LiveRole(id=platform.everyone_id, name="@everyone")

    snapshot = await capture_snapshot(platform)

    assert snapshot.workspace_id == platform.workspace_id
    assert [r.name for r in snapshot.roles] == ["Leader"]
    assert len(snapshot.categories) == 1
    assert snapshot.channels[0].parent_id == category.id


@pytest.mark.asyncio
async def test_store_lists_newest_first(snapshot_store):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    for offset in range(3):
        created = base + timedelta(hours=offset)
        await snapshot_store.put(_snapshot(new_snapshot_id(created), created))

    infos = await snapshot_store.list(GUILD)

    assert [info.created_at for info in infos] == sorted(
        (info.created_at for info in infos), reverse=True
    )
    assert infos[0].created_at == base + timedelta(hours=2)
    assert infos[0].role_count == 1
    assert infos[0].channel_count == 2


@pytest.mark.asyncio
async def test_store_never_overwrites(snapshot_store):
    snapshot = _snapshot("20240501-000000-aaaa0000", datetime(2024, 5, 1, tzinfo=timezone.utc))
    await snapshot_store.put(snapshot)

    with pytest.raises(FileExistsError):
        await snapshot_store.put(snapshot)


@pytest.mark.asyncio
async def test_store_get_round_trip_and_missing(snapshot_store):
    snapshot = _snapshot("20240501-000000-bbbb0000", datetime(2024, 5, 1, tzinfo=timezone.utc))
    await snapshot_store.put(snapshot)

    assert await snapshot_store.get(GUILD, snapshot.snapshot_id) == snapshot
    with pytest.raises(SnapshotNotFoundError):
        await snapshot_store.get(GUILD, "20990101-000000-deadbeef")
    with pytest.raises(SnapshotNotFoundError):
        await snapshot_store.get(GUILD, "../escape")
    with pytest.raises(SnapshotNotFoundError):
        await snapshot_store.get(GUILD + 1, snapshot.snapshot_id)


@pytest.mark.asyncio
async def test_store_skips_unreadable_files(snapshot_store):
    snapshot = _snapshot("20240501-000000-cccc0000", datetime(2024, 5, 1, tzinfo=timezone.utc))
    path = await snapshot_store.put(snapshot)
    (path.parent / "20240502-000000-broken00.json").write_text("{not json", encoding="utf-8")
    future = snapshot.to_dict()
    future.update(snapshot_id="20240503-000000-future00", schema_version=99)
    (path.parent / "20240503-000000-future00.json").write_text(json.dumps(future), encoding="utf-8")

    infos = await snapshot_store.list(GUILD)

    assert [info.snapshot_id for info in infos] == [snapshot.snapshot_id]


@pytest.mark.asyncio
async def test_store_prunes_oldest(tmp_path):
    store = SnapshotStore(tmp_path, max_per_guild=2)
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    ids = []
    for offset in range(3):
        created = base + timedelta(days=offset)
        snapshot_id = new_snapshot_id(created)
        ids.append(snapshot_id)
        await store.put(_snapshot(snapshot_id, created))

    remaining = [info.snapshot_id for info in await store.list(GUILD)]

    assert remaining == [ids[2], ids[1]]


@pytest.mark.asyncio
async def test_store_keeps_fresh_snapshot_taken_in_same_second(tmp_path):
    store = SnapshotStore(tmp_path, max_per_guild=1)
    created = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    await store.put(_snapshot("20240101-120000-ffffffff", created))

    path = await store.put(_snapshot("20240101-120000-00000000", created))

    assert path.exists()
    assert [info.snapshot_id for info in await store.list(GUILD)] == ["20240101-120000-00000000"]
    assert (await store.get(GUILD, "20240101-120000-00000000")).snapshot_id == "20240101-120000-00000000"
