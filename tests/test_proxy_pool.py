#!/usr/bin/env python3
"""
Unit tests for proxy parsing, rotation and health tracking.
"""

import random

import pytest

from scrape_imdb.proxy_pool import ProxyInfo, ProxyPool, parse_proxy_line


def test_parse_proxy_line_formats():
    plain = parse_proxy_line("10.0.0.1:8000")
    assert (plain.host, plain.port, plain.username) == ("10.0.0.1", 8000, None)

    webshare = parse_proxy_line("p.webshare.io:80:alice:secret")
    assert (webshare.username, webshare.password) == ("alice", "secret")

    url = parse_proxy_line("socks5://bob:pw@proxy.example.com:1080")
    assert (url.scheme, url.host, url.port, url.username) == ("socks5", "proxy.example.com", 1080, "bob")


@pytest.mark.parametrize("line", ["", "   ", "# comment", "host-only", "host:notaport", "a:1:b"])
def test_parse_proxy_line_rejects(line):
    assert parse_proxy_line(line) is None


def test_proxy_id_ignores_credentials():
    a = ProxyInfo(host="10.0.0.1", port=8000, username="u1", password="p1")
    b = ProxyInfo(host="10.0.0.1", port=8000, username="u2", password="p2")
    c = ProxyInfo(host="10.0.0.2", port=8000)

    assert a.id == b.id
    assert a.id != c.id
    assert len(a.id) == 12


def test_playwright_format():
    proxy = ProxyInfo(host="10.0.0.1", port=8000, username="u", password="p")
    assert proxy.to_playwright_format() == {"server": "http://10.0.0.1:8000", "username": "u", "password": "p"}
    assert ProxyInfo(host="h", port=1).to_playwright_format() == {"server": "http://h:1"}


def test_health_requires_ten_attempts():
    proxy = ProxyInfo(host="h", port=1, failure_count=9)
    assert proxy.is_healthy

    proxy.failure_count = 10
    assert not proxy.is_healthy

    proxy.success_count = 10
    assert proxy.is_healthy


def test_choose_avoids_last_used():
    pool = ProxyPool.from_list(["10.0.0.1:8000", "10.0.0.2:8000", "10.0.0.3:8000"], rng=random.Random(0))

    last = None
    for _ in range(20):
        proxy = pool.choose(exclude_id=last)
        assert proxy.id != last
        assert proxy.last_used is not None
        last = proxy.id


def test_choose_prefers_healthy_proxies():
    pool = ProxyPool.from_list(["10.0.0.1:8000", "10.0.0.2:8000"], rng=random.Random(0))
    burned = pool.proxies[0]
    burned.failure_count = 20

    for _ in range(10):
        assert pool.choose() is pool.proxies[1]


def test_choose_single_proxy_and_empty_pool():
    single = ProxyPool.from_list(["10.0.0.1:8000"])
    only = single.proxies[0]

    assert single.choose(exclude_id=only.id) is only
    assert ProxyPool().choose() is None


def test_report_success_and_failure():
    pool = ProxyPool.from_list(["10.0.0.1:8000"])
    proxy = pool.proxies[0]

    pool.report_success(proxy)
    pool.report_failure(proxy, "blocked")

    stats = pool.get_stats()
    assert stats["total_proxies"] == 1
    assert stats["total_successes"] == 1
    assert stats["total_failures"] == 1
    assert stats["overall_success_rate"] == 0.5
    assert pool.get_by_id(proxy.id) is proxy
    assert pool.get_by_id("missing") is None


def test_from_file(tmp_path):
    proxy_file = tmp_path / "proxies.txt"
    proxy_file.write_text("# residential\n10.0.0.1:8000:u:p\n\ngarbage\n10.0.0.2:8000\n")

    pool = ProxyPool.from_file(str(proxy_file))
    assert len(pool) == 2

    with pytest.raises(FileNotFoundError):
        ProxyPool.from_file(str(tmp_path / "missing.txt"))


def test_from_env(monkeypatch):
    monkeypatch.delenv("IMDB_PROXY_FILE", raising=False)
    monkeypatch.setenv("IMDB_PROXIES", "10.0.0.1:8000, 10.0.0.2:8000")
    assert len(ProxyPool.from_env()) == 2

    monkeypatch.delenv("IMDB_PROXIES")
    assert len(ProxyPool.from_env()) == 0
