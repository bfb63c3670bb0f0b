# Copyright (c) 2025 Trae AI. All rights reserved.

import asyncio
import threading
import time
import pytest
import requests
from unittest.mock import MagicMock
from cloudshelf.core.exceptions import MetadataTransportError, RateLimitExceededError
from cloudshelf.core.metadata import MetadataClient, ThrottleGate
from cloudshelf.core.models import Confidence, LibraryType, MetadataSource, ParsedTitle


def _response(status=200, payload=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.json.return_value = payload if payload is not None else {}
    return resp


def _client(fake_clock, responses, **kwargs):
    session = MagicMock()
    if isinstance(responses, list):
        session.get.side_effect = responses
    else:
        session.get.return_value = responses
    client = MetadataClient(
        tmdb_api_key="fake_key",
        session=session,
        clock=fake_clock,
        sleep=fake_clock.sleep,
        **kwargs,
    )
    return client, session


@pytest.mark.asyncio
async def test_throttle_spaces_sequential_requests(fake_clock):
    gate = ThrottleGate(0.12, clock=fake_clock, sleep=fake_clock.sleep)
    starts = []
    for _ in range(3):
        async with gate:
            starts.append(fake_clock())

    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= 0.12 - 1e-9 for gap in gaps)

@pytest.mark.asyncio
async def test_throttle_spaces_concurrent_requests(fake_clock):
    gate = ThrottleGate(0.12, clock=fake_clock, sleep=fake_clock.sleep)
    starts = []

    async def request():
        async with gate:
            starts.append(fake_clock())
            await asyncio.sleep(0)

    await asyncio.gather(*(request() for _ in range(5)))

    assert len(starts) == 5
    starts.sort()
    assert all(b - a >= 0.12 - 1e-9 for a, b in zip(starts, starts[1:]))

@pytest.mark.asyncio
async def test_throttle_does_not_wait_when_gap_elapsed(fake_clock):
    gate = ThrottleGate(0.12, clock=fake_clock, sleep=fake_clock.sleep)
    async with gate:
        pass
    fake_clock.advance(1.0)
    async with gate:
        pass
    assert fake_clock.sleeps == []

def test_throttle_holds_across_threads():
    gate = ThrottleGate(0.05)
    spans = []
    errors = []

    async def request():
        async with gate:
            started = time.monotonic()
            await asyncio.sleep(0.2)
            spans.append((started, time.monotonic()))

    def worker():
        try:
            asyncio.run(request())
        except Exception as exc:
            errors.append(exc)

    first = threading.Thread(target=worker)
    second = threading.Thread(target=worker)
    first.start()
    time.sleep(0.05)
    second.start()
    first.join(5)
    second.join(5)

    assert errors == []
    assert len(spans) == 2
    (a_start, a_end), (b_start, b_end) = sorted(spans)
    assert b_start >= a_end
    assert b_start - a_start >= 0.05

@pytest.mark.asyncio
async def test_rate_limit_retry_is_bounded(fake_clock):
    client, session = _client(fake_clock, _response(429), max_attempts=3)

    with pytest.raises(RateLimitExceededError):
        await client.search(ParsedTitle(title="The Matrix"), LibraryType.MOVIES)

    assert session.get.call_count == 3
    # Backoff only between attempts: 2s then 4s
    assert fake_clock.sleeps == [2.0, 4.0]

@pytest.mark.asyncio
async def test_rate_limit_then_success(fake_clock):
    payload = {"results": [{"id": 603, "title": "The Matrix", "release_date": "1999-03-30"}]}
    client, session = _client(fake_clock, [_response(429), _response(200, payload)])

    patch = await client.search(ParsedTitle(title="The Matrix", year=1999), LibraryType.MOVIES)

    assert patch.metadata_id == "603"
    assert session.get.call_count == 2

@pytest.mark.asyncio
async def test_retry_after_header_is_respected(fake_clock):
    client, _ = _client(
        fake_clock,
        [_response(429, headers={"Retry-After": "7"}), _response(200, {"results": []})],
    )
    await client.search(ParsedTitle(title="Nothing"), LibraryType.MOVIES)
    assert fake_clock.sleeps[0] == 7.0

@pytest.mark.asyncio
async def test_movie_search_normalizes_top_result(fake_clock):
    payload = {
        "results": [
            {
                "id": 603,
                "title": "The Matrix",
                "release_date": "1999-03-30",
                "poster_path": "/p.jpg",
                "backdrop_path": "/b.jpg",
                "overview": "A hacker learns the truth.",
                "vote_average": 8.2,
            },
            {"id": 604, "title": "The Matrix Reloaded"},
        ]
    }
    client, session = _client(fake_clock, _response(200, payload))

    patch = await client.search(ParsedTitle(title="The Matrix", year=1999), LibraryType.MOVIES)

    assert patch.title == "The Matrix"
    assert patch.year == 1999
    assert patch.poster_url == "https://image.tmdb.org/t/p/w342/p.jpg"
    assert patch.metadata_source == MetadataSource.TMDB
    assert patch.metadata_confidence == Confidence.HIGH
    params = session.get.call_args.kwargs["params"]
    assert params["year"] == 1999
    assert params["api_key"] == "fake_key"

@pytest.mark.asyncio
async def test_movie_search_retries_without_year(fake_clock):
    client, session = _client(
        fake_clock,
        [_response(200, {"results": []}), _response(200, {"results": [{"id": 1, "title": "X"}]})],
    )
    patch = await client.search(ParsedTitle(title="X", year=2001), LibraryType.MOVIES)

    assert patch.metadata_id == "1"
    assert "year" not in session.get.call_args.kwargs["params"]

@pytest.mark.asyncio
async def test_no_match_returns_empty_patch(fake_clock):
    client, _ = _client(fake_clock, _response(200, {"results": []}))
    patch = await client.search(ParsedTitle(title="Unknown Thing"), LibraryType.MOVIES)
    assert patch.is_empty

@pytest.mark.asyncio
async def test_tv_search_fetches_episode(fake_clock):
    show = {"results": [{"id": 1399, "name": "Show Name", "poster_path": "/show.jpg", "first_air_date": "2011-04-17"}]}
    episode = {"name": "The Episode", "still_path": "/still.jpg", "overview": "Things happen."}
    client, session = _client(fake_clock, [_response(200, show), _response(200, episode)])

    patch = await client.search(
        ParsedTitle(title="Show Name", season=2, episode=5, is_episode=True), LibraryType.TV
    )

    assert session.get.call_args.args[0].endswith("/tv/1399/season/2/episode/5")
    assert patch.show_title == "Show Name"
    assert patch.show_id == "1399"
    assert patch.episode_title == "The Episode"
    assert patch.thumb_url == "https://image.tmdb.org/t/p/w300/still.jpg"
    assert patch.title is None

@pytest.mark.asyncio
async def test_tv_episode_failure_keeps_show_data(fake_clock):
    show = {"results": [{"id": 1399, "name": "Show Name"}]}
    client, _ = _client(fake_clock, [_response(200, show), _response(500)])

    patch = await client.search(
        ParsedTitle(title="Show Name", season=1, episode=1, is_episode=True), LibraryType.TV
    )
    assert patch.show_title == "Show Name"
    assert patch.episode_title is None

@pytest.mark.asyncio
async def test_transport_error_is_raised_and_counted(fake_clock):
    client, session = _client(fake_clock, _response(200), degraded_threshold=2)
    session.get.side_effect = requests.ConnectionError("down")

    for _ in range(2):
        with pytest.raises(MetadataTransportError):
            await client.search(ParsedTitle(title="X"), LibraryType.MOVIES)

    assert client.failure_count(MetadataSource.TMDB) == 2
    assert client.is_degraded(MetadataSource.TMDB)

@pytest.mark.asyncio
async def test_success_resets_failure_count(fake_clock):
    client, session = _client(fake_clock, [_response(500), _response(200, {"results": []})])

    with pytest.raises(MetadataTransportError):
        await client.search(ParsedTitle(title="X"), LibraryType.MOVIES)
    await client.search(ParsedTitle(title="X"), LibraryType.MOVIES)

    assert client.failure_count(MetadataSource.TMDB) == 0

@pytest.mark.asyncio
async def test_no_provider_without_key(fake_clock):
    client, session = _client(fake_clock, _response(200))
    client.tmdb_api_key = None

    patch = await client.search(ParsedTitle(title="X"), LibraryType.MOVIES)

    assert patch.is_empty
    session.get.assert_not_called()

@pytest.mark.asyncio
async def test_bearer_token_for_v4_keys(fake_clock):
    client, session = _client(fake_clock, _response(200, {"results": []}))
    client.tmdb_api_key = "eyJhbGciOi.token"

    await client.search(ParsedTitle(title="X"), LibraryType.MOVIES)

    kwargs = session.get.call_args.kwargs
    assert kwargs["headers"]["Authorization"] == "Bearer eyJhbGciOi.token"
    assert "api_key" not in kwargs["params"]

@pytest.mark.asyncio
async def test_music_search_sends_user_agent(fake_clock):
    payload = {
        "recordings": [
            {
                "id": "rec-1",
                "title": "Song",
                "artist-credit": [{"name": "Band"}],
                "releases": [{"title": "Album", "date": "2003-01-01", "media": [{"track": [{"number": "4"}]}]}],
            }
        ]
    }
    client, session = _client(fake_clock, _response(200, payload))

    patch = await client.search(ParsedTitle(title="Song"), LibraryType.MUSIC)

    assert "User-Agent" in session.get.call_args.kwargs["headers"]
    assert (patch.artist, patch.album, patch.track_number, patch.year) == ("Band", "Album", 4, 2003)

@pytest.mark.asyncio
async def test_search_candidates_limit(fake_clock):
    results = {"results": [{"id": i, "title": f"Movie {i}"} for i in range(12)]}
    client, _ = _client(fake_clock, _response(200, results))

    candidates = await client.search_candidates("Movie", LibraryType.MOVIES, limit=8)

    assert len(candidates) == 8
    assert candidates[0].metadata_id == "0"
