import threading
import time

import pytest

from strava_challenge.strava_client.rate_limiter import RateLimiter


def worker(limiter: RateLimiter, started_evt: threading.Event, release_evt: threading.Event):
    """Acquire a slot, signal start, wait until release, then free slot."""
    limiter.before_request()
    started_evt.set()
    release_evt.wait()
    limiter.after_response(None, 200)


def _spawn(limiter):
    started, release = threading.Event(), threading.Event()
    t = threading.Thread(target=worker, args=(limiter, started, release))
    t.start()
    return started, release, t


def test_rate_limiter_resize_behavior():
    """Validate dynamic resize semantics (grow then shrink)."""
    limiter = RateLimiter(max_concurrent=2, jitter_range=(0, 0))

    a = _spawn(limiter)
    b = _spawn(limiter)
    assert a[0].wait(0.3) and b[0].wait(0.3), "Initial workers failed to start in time"

    # Third worker should block (limit=2)
    c = _spawn(limiter)
    assert not c[0].wait(0.07), "Third worker should have been blocked before resize"

    limiter.resize(3)
    assert c[0].wait(0.3), "Blocked worker did not start after resize increase"

    d = _spawn(limiter)
    assert not d[0].wait(0.07), "Fourth worker should be blocked until a slot frees"

    a[1].set()
    a[2].join(timeout=0.6)
    assert d[0].wait(0.3), "Fourth worker failed to start after slot freed"

    for _, release, thread in (b, c, d):
        release.set()
        thread.join(timeout=0.6)
    assert limiter.snapshot()["in_flight"] == 0

    # Shrink limit to 1 and validate blocking behavior
    limiter.resize(1)
    e = _spawn(limiter)
    assert e[0].wait(0.3), "First worker after shrink did not start"
    f = _spawn(limiter)
    assert not f[0].wait(0.07), "Second worker should block with limit=1"

    e[1].set()
    e[2].join(timeout=0.6)
    assert f[0].wait(0.3), "Second worker did not start after first released"
    f[1].set()
    f[2].join(timeout=0.6)


def test_429_sets_throttle_without_retrying():
    limiter = RateLimiter(max_concurrent=1, jitter_range=(0, 0), throttle_seconds=5)
    limiter.before_request()

    before = time.time()
    throttled, reason = limiter.after_response({}, 429)

    assert throttled is True
    assert reason == "status=429"
    snap = limiter.snapshot()
    assert snap["in_flight"] == 0
    assert snap["throttle_until"] >= before + 5


def test_near_limit_usage_header_throttles():
    limiter = RateLimiter(max_concurrent=1, jitter_range=(0, 0), throttle_seconds=1)
    limiter.before_request()

    throttled, reason = limiter.after_response(
        {"X-RateLimit-Usage": "98,500", "X-RateLimit-Limit": "100,1000"}, 200
    )

    assert throttled is True
    assert reason == "usage=98/100"


def test_normal_response_does_not_throttle():
    limiter = RateLimiter(max_concurrent=1, jitter_range=(0, 0))
    limiter.before_request()

    assert limiter.after_response({"X-RateLimit-Usage": "bogus"}, 200) == (False, "")
    assert limiter.snapshot()["throttle_until"] == 0.0


@pytest.mark.parametrize("bad", [0, -1])
def test_invalid_limits_rejected(bad):
    with pytest.raises(ValueError):
        RateLimiter(max_concurrent=bad)
    with pytest.raises(ValueError):
        RateLimiter(max_concurrent=1).resize(bad)
