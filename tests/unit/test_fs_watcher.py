"""Unit tests for the filesystem watcher."""

import asyncio
from pathlib import Path

import pytest
from watchdog.events import DirCreatedEvent, FileMovedEvent, FileOpenedEvent

from tapcon_monitor.utils.fs_watcher import FsEvent, FsWatcher, _LoopHandler


@pytest.mark.asyncio
async def test_handler_delivers_to_loop():
    """Test that observer events reach the events queue."""
    watcher = FsWatcher()
    watcher._loop = asyncio.get_running_loop()
    handler = _LoopHandler(watcher)

    handler.on_any_event(DirCreatedEvent("/var/lib/docker/containers/abc"))
    event = await asyncio.wait_for(watcher.events.get(), timeout=1)

    assert event == FsEvent(Path("/var/lib/docker/containers/abc"), "created", True)


@pytest.mark.asyncio
async def test_handler_uses_move_destination():
    """Test that renames report the destination path."""
    watcher = FsWatcher()
    watcher._loop = asyncio.get_running_loop()
    handler = _LoopHandler(watcher)

    handler.on_any_event(FileMovedEvent("/c/abc/.tmp-config", "/c/abc/config.v2.json"))
    event = await asyncio.wait_for(watcher.events.get(), timeout=1)

    assert event.path == Path("/c/abc/config.v2.json")
    assert event.event_type == "moved"


@pytest.mark.asyncio
async def test_handler_ignores_access_events():
    """Test that open notifications are dropped."""
    watcher = FsWatcher()
    watcher._loop = asyncio.get_running_loop()
    handler = _LoopHandler(watcher)

    handler.on_any_event(FileOpenedEvent("/c/abc/config.v2.json"))
    await asyncio.sleep(0)

    assert watcher.events.empty()


@pytest.mark.asyncio
async def test_watch_directory(tmp_path):
    """Test real notifications for a watched directory."""
    watcher = FsWatcher()
    watcher.start()
    try:
        watcher.add_watch(tmp_path)
        assert watcher.watched() == [tmp_path]

        (tmp_path / "abc").mkdir()
        event = await asyncio.wait_for(watcher.events.get(), timeout=5)

        assert event.path == tmp_path / "abc"
        watcher.remove_watch(tmp_path)
        assert watcher.watched() == []
    finally:
        watcher.stop()


def test_add_watch_missing_directory(tmp_path):
    """Test that watching a missing directory raises OSError."""
    watcher = FsWatcher()
    watcher._observer.start()
    try:
        with pytest.raises(OSError):
            watcher.add_watch(tmp_path / "missing")
    finally:
        watcher.stop()


def test_remove_unknown_watch_is_ignored(tmp_path):
    """Test that removing a path that is not watched does nothing."""
    watcher = FsWatcher()
    watcher.remove_watch(tmp_path)
