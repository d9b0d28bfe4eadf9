#!/usr/bin/env python3
"""
Unit tests for the TMDB client and its TTL cache.

The HTTP layer is a Mock session; nothing touches the network.
"""

from unittest.mock import Mock

import pytest
import requests

from scrape_imdb.tmdb_client import TMDBClient, TMDBError, TTLCache, normalize_title


def _response(status_code=200, payload=None, headers=None):
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    return response


SEARCH_PAYLOAD = {
    "results": [
        {"id": 27205, "media_type": "movie", "title": "Inception", "release_date": "2010-07-15"},
        {"id": 525, "media_type": "person", "name": "Christopher Nolan"},
        {"id": 1396, "media_type": "tv", "name": "Breaking Bad", "first_air_date": "2008-01-20"},
    ]
}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


# ===== CACHE =====

def test_ttl_cache_expires_entries():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)
    cache.set("k", "v")

    clock.now += 59
    assert cache.get("k") == "v"

    clock.now += 2
    assert cache.get("k") is None
    assert cache.stats["expirations"] == 1
    assert len(cache) == 0


def test_ttl_cache_lru_eviction():
    cache = TTLCache(ttl_seconds=60, clock=FakeClock(), max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.stats["evictions"] == 1


def test_ttl_cache_purge_expired():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("old", 1)
    clock.now += 20
    cache.set("new", 2)

    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_normalize_title():
    assert normalize_title("  The   Dark Knight ") == "the dark knight"


# ===== CLIENT =====

def test_search_filters_people_and_caches():
    session = Mock()
    session.get.return_value = _response(payload=SEARCH_PAYLOAD)
    client = TMDBClient("abc123", session=session)

    results = client.search("Inception", "2010")
    again = client.search("inception ")

    assert [r["id"] for r in results] == [27205, 1396]
    assert again == results
    assert session.get.call_count == 1

    _, kwargs = session.get.call_args
    assert kwargs["params"]["api_key"] == "abc123"
    assert kwargs["params"]["query"] == "Inception"


def test_bearer_token_sent_as_header():
    session = Mock()
    session.get.return_value = _response(payload={"results": []})
    client = TMDBClient("eyJhbGciOiJIUzI1NiJ9.token", session=session)

    client.search("Anything")

    _, kwargs = session.get.call_args
    assert kwargs["headers"]["Authorization"].startswith("Bearer eyJ")
    assert "api_key" not in kwargs["params"]


def test_rate_limit_retries_once_after_retry_after():
    session = Mock()
    session.get.side_effect = [
        _response(429, headers={"Retry-After": "3"}),
        _response(payload=SEARCH_PAYLOAD),
    ]
    slept = []
    client = TMDBClient("abc123", session=session, sleep=slept.append)

    assert len(client.search("Inception")) == 2
    assert slept == [3.0]
    assert session.get.call_count == 2


def test_rate_limit_twice_raises():
    session = Mock()
    session.get.return_value = _response(429, headers={"Retry-After": "120"})
    slept = []
    client = TMDBClient("abc123", session=session, sleep=slept.append)

    with pytest.raises(TMDBError) as exc_info:
        client.search("Inception")

    assert exc_info.value.status_code == 429
    # Retry-After is capped
    assert slept == [10.0]


def test_not_found_and_server_error():
    session = Mock()
    session.get.return_value = _response(404)
    client = TMDBClient("abc123", session=session)
    assert client.details(99999999, "movie") == {}

    session.get.return_value = _response(500)
    with pytest.raises(TMDBError):
        client.details(1, "tv")


def test_network_error_wrapped():
    session = Mock()
    session.get.side_effect = requests.ConnectionError("connection reset")
    client = TMDBClient("abc123", session=session)

    with pytest.raises(TMDBError, match="Network error"):
        client.search("Inception")


def test_details_endpoint_by_media_type():
    session = Mock()
    session.get.return_value = _response(payload={"runtime": 148})
    client = TMDBClient("abc123", session=session)

    assert client.details(27205, "movie") == {"runtime": 148}
    client.details(1396, "tv")

    urls = [c.args[0] for c in session.get.call_args_list]
    assert urls[0].endswith("/movie/27205")
    assert urls[1].endswith("/tv/1396")


def test_is_configured_and_poster_url():
    assert TMDBClient("real-key", session=Mock()).is_configured
    assert not TMDBClient("", session=Mock()).is_configured
    assert not TMDBClient("your_tmdb_api_key_here", session=Mock()).is_configured

    assert TMDBClient.poster_url("/abc.jpg") == "https://image.tmdb.org/t/p/w500/abc.jpg"
    assert TMDBClient.poster_url(None) is None
