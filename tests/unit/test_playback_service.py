# Copyright (c) 2025 Trae AI. All rights reserved.

import pytest
from cloudshelf.core.exceptions import ItemNotFoundError
from cloudshelf.core.models import WatchProgress
from cloudshelf.services.playback_service import PlaybackService


@pytest.fixture
def service(store, fake_clock):
    return PlaybackService(store, interval=10.0, clock=fake_clock)


def test_report_writes_at_bounded_cadence(service, store, fake_clock):
    assert service.report("item", 40, 1000) is True

    fake_clock.advance(5)
    assert service.report("item", 45, 1000) is False
    assert store.progress.get("item").position == 40

    fake_clock.advance(5)
    assert service.report("item", 50, 1000) is True
    assert store.progress.get("item").position == 50

def test_completion_transition_always_writes(service, store, fake_clock):
    service.report("item", 800, 1000)
    fake_clock.advance(1)

    assert service.report("item", 950, 1000) is True
    assert store.progress.get("item").completed is True

def test_completion_threshold(service):
    assert service.is_complete(901, 1000) is True
    assert service.is_complete(900, 1000) is False
    assert service.is_complete(10, 0) is False

def test_flush_writes_pending_tick(service, store, fake_clock):
    service.report("item", 40, 1000)
    fake_clock.advance(2)
    service.report("item", 42, 1000, cfi="epubcfi(/6/4)")

    flushed = service.flush("item")

    assert flushed.position == 42
    stored = store.progress.get("item")
    assert stored.position == 42
    assert stored.cfi == "epubcfi(/6/4)"
    assert service.flush("item") is None

def test_mark_completed_and_clear(service, store):
    service.report("item", 300, 1000)

    progress = service.mark_completed("item")

    assert progress.completed is True
    assert store.progress.get("item").position == 1000

    service.clear("item")
    assert store.progress.get("item") is None

def test_resume_position(service, store):
    store.progress.save(WatchProgress(item_id="a", position=120, duration=1000))
    store.progress.save(WatchProgress(item_id="b", position=5, duration=1000))
    store.progress.save(WatchProgress(item_id="c", position=990, duration=1000, completed=True))

    assert service.resume_position("a") == 120
    assert service.resume_position("b") == 0.0
    assert service.resume_position("c") == 0.0
    assert service.resume_position("missing") == 0.0

@pytest.mark.asyncio
async def test_request_play_sends_command(service, store, make_item):
    item = make_item("/m/a.mkv")
    store.media.upsert(item)
    store.progress.save(WatchProgress(item_id=item.id, position=300, duration=1000))

    sent = await service.request_play(item.id)
    received = await service.channel.next_command()

    assert received == sent
    assert received.resume_at == 300

@pytest.mark.asyncio
async def test_request_play_explicit_start(service, store, make_item):
    item = make_item("/m/a.mkv")
    store.media.upsert(item)

    command = await service.request_play(item.id, resume_at=0.0)
    assert command.resume_at == 0.0
    assert service.channel.pending() == 1

@pytest.mark.asyncio
async def test_request_play_unknown_item(service):
    with pytest.raises(ItemNotFoundError):
        await service.request_play("missing")
