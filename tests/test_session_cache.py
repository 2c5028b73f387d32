import threading
import time

import httpx

from upstream.session_cache import SessionCache

COOKIES = ("ASP.NET_SessionId=abc123; path=/; HttpOnly", "TS01=xyz; Path=/; Secure")


def _landing(calls, cookies=COOKIES, delay=0.0, fail=False):
    def handler(request):
        calls.append(request)
        if delay:
            time.sleep(delay)
        if fail:
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, headers=[("set-cookie", c) for c in cookies], text="<html></html>")

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_harvests_name_value_pairs_once():
    calls = []
    cache = SessionCache(client=_landing(calls), landing_url="https://hospital.test/index.html")
    assert cache.get_session_header() == "ASP.NET_SessionId=abc123; TS01=xyz"
    assert cache.get_session_header() == "ASP.NET_SessionId=abc123; TS01=xyz"
    assert len(calls) == 1
    assert "Mozilla" in calls[0].headers["user-agent"]
    assert "cookie" not in calls[0].headers


def test_invalidate_forces_reharvest():
    calls = []
    cache = SessionCache(client=_landing(calls), landing_url="https://hospital.test/")
    cache.get_session_header()
    assert cache.invalidate() is True
    assert cache.status()["has_session"] is False
    cache.get_session_header()
    assert len(calls) == 2


def test_invalidate_ignores_rejection_of_older_session():
    calls = []
    cache = SessionCache(client=_landing(calls), landing_url="https://hospital.test/")
    cache.get_session_header()
    assert cache.invalidate(rejected="OLD=1") is False
    assert cache.status()["cookie_count"] == 2


def test_harvest_failure_degrades_to_empty_and_retries_next_call():
    calls = []
    cache = SessionCache(client=_landing(calls, fail=True), landing_url="https://hospital.test/")
    assert cache.get_session_header() == ""
    assert cache.get_session_header() == ""
    assert len(calls) == 2


def test_no_cookies_is_not_cached():
    calls = []
    cache = SessionCache(client=_landing(calls, cookies=()), landing_url="https://hospital.test/")
    assert cache.get_session_header() == ""
    assert cache.status() == {"has_session": False, "cookie_count": 0, "harvested_at": None}


def test_concurrent_callers_harvest_once():
    calls = []
    cache = SessionCache(client=_landing(calls, delay=0.05), landing_url="https://hospital.test/")
    results = []

    def worker():
        results.append(cache.get_session_header())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert set(results) == {"ASP.NET_SessionId=abc123; TS01=xyz"}
