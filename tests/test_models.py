"""Tests for the persisted process record."""

from __future__ import annotations

from pathlib import Path

import pytest

from hostsupervisor.config import Config
from hostsupervisor.models import CHROMEDRIVER, ProcessRecord, RecordStore


@pytest.fixture
def store(tmp_path: Path) -> RecordStore:
    return RecordStore(
        tmp_path / "chromedriver-9515.pid",
        name="chromedriver",
        port=9515,
        log_path=tmp_path / "chromedriver-9515.log",
    )


def test_missing_record(store):
    assert store.load() is None
    store.delete()
    assert not store.exists()


def test_save_and_load(store, tmp_path):
    record = ProcessRecord(
        name="chromedriver",
        pid=4242,
        port=9515,
        log_path=tmp_path / "chromedriver-9515.log",
        create_time=1700000000.5,
    )
    store.save(record)

    loaded = store.load()
    assert loaded == record
    assert not store.path.with_suffix(".tmp").exists()


def test_bare_pid_file(store, tmp_path):
    store.path.write_text("4242\n")

    record = store.load()
    assert record.pid == 4242
    assert record.port == 9515
    assert record.log_path == tmp_path / "chromedriver-9515.log"
    assert record.create_time is None


@pytest.mark.parametrize("content", ["", "not a pid", "0", "-12", '{"pid": 1}'])
def test_invalid_record_is_discarded(store, content):
    store.path.write_text(content)

    assert store.load() is None
    assert not store.exists()


def test_paths_are_keyed_by_name_and_port(tmp_path):
    cfg = Config(state_dir=tmp_path)

    assert cfg.record_path("chromedriver", 9515) == tmp_path / "chromedriver-9515.pid"
    assert cfg.log_path("chromedriver", 4444) == tmp_path / "chromedriver-4444.log"
    assert cfg.supervisor_log == tmp_path / "hostsupervisor.log"


def test_chromedriver_launch_flags():
    assert CHROMEDRIVER.launch_args(9515) == [
        "--port=9515",
        "--allowed-ips=",
        "--allowed-origins=*",
    ]
    assert CHROMEDRIVER.with_binary("/usr/local/bin/chromedriver").binary == "/usr/local/bin/chromedriver"
