import threading

import pytest

from charge_quest.provider import RateLimiter, parse_retry_after


def worker(limiter: RateLimiter, started_evt: threading.Event, release_evt: threading.Event):
    """Acquire a slot, signal start, wait until release, then free slot."""
    limiter.before_request()
    started_evt.set()
    release_evt.wait()
    limiter.after_response(200)


def _spawn(limiter):
    started, release = threading.Event(), threading.Event()
    thread = threading.Thread(target=worker, args=(limiter, started, release))
    thread.start()
    return started, release, thread


def test_rate_limiter_resize_behavior():
    """Validate dynamic resize semantics (grow then shrink)."""
    limiter = RateLimiter(max_concurrent=2, jitter_range=(0.0, 0.0), min_interval=0.0)

    a = _spawn(limiter)
    b = _spawn(limiter)
    assert a[0].wait(0.3), "Initial worker failed to start in time"
    assert b[0].wait(0.3), "Initial worker failed to start in time"

    # Third worker should block (limit=2)
    c = _spawn(limiter)
    assert not c[0].wait(0.07), "Third worker should have been blocked before resize"

    # Grow limit -> unblock waiting worker
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

    snap = limiter.snapshot()
    assert snap["in_flight"] == 0, "All workers should have completed"
    assert snap["max_allowed"] == 1, "Limiter should retain last resized value"


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _paced(clock: ManualClock, **kwargs) -> RateLimiter:
    kwargs.setdefault("jitter_range", (0.0, 0.0))
    kwargs.setdefault("min_interval", 0.0)
    return RateLimiter(max_concurrent=1, clock=clock, sleep=clock.sleep, **kwargs)


def test_429_opens_throttle_window():
    clock = ManualClock()
    limiter = _paced(clock, throttle_seconds=30)
    limiter.before_request()
    assert limiter.after_response(429) is True
    snap = limiter.snapshot()
    assert snap["in_flight"] == 0
    assert snap["throttled_responses"] == 1
    assert snap["throttle_remaining"] == pytest.approx(30.0)

    limiter.before_request()
    assert clock.sleeps == [pytest.approx(30.0)]
    limiter.after_response(200)


def test_retry_after_header_overrides_default_window():
    clock = ManualClock()
    limiter = _paced(clock, throttle_seconds=30)
    limiter.before_request()
    limiter.after_response(429, retry_after=4.0)
    assert limiter.snapshot()["throttle_remaining"] == pytest.approx(4.0)


def test_success_does_not_throttle():
    clock = ManualClock()
    limiter = _paced(clock)
    limiter.before_request()
    assert limiter.after_response(200) is False
    assert limiter.snapshot()["throttle_remaining"] == 0.0
    assert clock.sleeps == []


def test_min_interval_spaces_request_starts():
    clock = ManualClock()
    limiter = _paced(clock, min_interval=0.5)
    for _ in range(3):
        limiter.before_request()
        limiter.after_response(200)
    assert clock.sleeps == [pytest.approx(0.5), pytest.approx(0.5)]
    assert limiter.snapshot()["requests_started"] == 3


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"Retry-After": "12"}, 12.0),
        ({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}, None),
        ({"Retry-After": "-1"}, None),
        ({}, None),
        (None, None),
    ],
)
def test_parse_retry_after(headers, expected):
    assert parse_retry_after(headers) == expected


def test_invalid_limits_rejected():
    with pytest.raises(ValueError):
        RateLimiter(max_concurrent=0)
    with pytest.raises(ValueError):
        RateLimiter(max_concurrent=1).resize(0)
