import pytest

from listui.utils.circuit_breaker import CircuitBreaker, CircuitState
from listui.utils.formatting import format_clock, format_position, truncate
from listui.utils.path import parse_playlist_url, track_filename


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://www.youtube.com/playlist?list=PLabcdefghij123", "PLabcdefghij123"),
        (
            "https://music.youtube.com/watch?v=xyz&list=OLAK5uy_abcdefgh&index=2",
            "OLAK5uy_abcdefgh",
        ),
        ("PLabcdefghij123", "PLabcdefghij123"),
        ("https://www.youtube.com/watch?v=xyz", None),
        ("not a url", None),
    ],
)
def test_parse_playlist_url(url, expected):
    assert parse_playlist_url(url) == expected


def test_track_filename_is_sanitized_and_unique():
    name = track_filename("AC/DC: Back in Black?", "abc123")
    assert "/" not in name
    assert name.endswith("[abc123].mp3")


def test_format_clock():
    assert format_clock(75) == "01:15"
    assert format_clock(3725) == "01:02:05"
    assert format_clock(-3) == "00:00"


def test_format_position():
    assert format_position(62, 210, paused=True) == "01:02 / 03:30 (paused)"


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("a long title", 6) == "a lon…"


@pytest.mark.asyncio
async def test_circuit_breaker_opens_and_recovers():
    breaker = CircuitBreaker("https://a.example", failure_threshold=2, recovery_timeout=0)
    await breaker.record_failure()
    assert breaker.state is CircuitState.CLOSED
    await breaker.record_failure()
    assert breaker._state is CircuitState.OPEN

    assert breaker.state is CircuitState.HALF_OPEN
    await breaker.record_success()
    assert breaker.state is CircuitState.CLOSED
