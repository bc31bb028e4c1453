import orjson

from storage_node.status_snapshot import StatusSnapshot, StatusSnapshotStore


def make_store(tmp_path, now, alive=True, **kwargs):
    return StatusSnapshotStore(
        tmp_path / "node-status.json",
        clock=lambda: now[0],
        pid_alive=lambda pid: alive,
        **kwargs,
    )


def test_save_then_load(tmp_path):
    now = [1000.0]
    store = make_store(tmp_path, now)

    saved = store.save(True, pid=321, registered=True)

    assert saved == StatusSnapshot(running=True, pid=321, registered=True, timestamp=1000.0)
    assert store.load() == saved
    assert orjson.loads(store.path.read_bytes())["pid"] == 321


def test_dead_pid_reports_not_running(tmp_path):
    now = [1000.0]
    make_store(tmp_path, now).save(True, pid=321)

    loaded = make_store(tmp_path, now, alive=False).load()

    assert loaded.running is False
    assert loaded.pid == 321


def test_running_without_pid_is_not_trusted(tmp_path):
    now = [1000.0]
    store = make_store(tmp_path, now)
    store.save(True)

    assert store.load().running is False


def test_stale_missing_and_corrupt_snapshots_are_ignored(tmp_path):
    now = [1000.0]
    store = make_store(tmp_path, now, freshness_seconds=60.0)
    assert store.load() is None

    store.save(False)
    now[0] = 1061.0
    assert store.load() is None

    store.path.write_text("{broken")
    now[0] = 1000.0
    assert store.load() is None

    store.path.write_bytes(orjson.dumps({"pid": 1}))
    assert store.load() is None


def test_clear_removes_file(tmp_path):
    now = [1000.0]
    store = make_store(tmp_path, now)
    store.save(False)

    store.clear()
    store.clear()

    assert not store.path.exists()
