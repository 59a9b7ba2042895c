from alertcast.cache import TTLCache


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("a", {"value": 1}, ttl=120)

    clock.advance(119.9)
    assert cache.get("a") == {"value": 1}
    assert "a" in cache

    clock.advance(0.1)
    assert cache.get("a") is None
    assert "a" not in cache
    assert len(cache) == 0


def test_sweep_runs_on_write_after_interval() -> None:
    clock = FakeClock()
    cache = TTLCache(sweep_interval=60, clock=clock)
    cache.set("short", 1, ttl=10)
    cache.set("long", 2, ttl=300)

    clock.advance(30)
    cache.set("other", 3, ttl=300)
    assert len(cache) == 3

    clock.advance(31)
    cache.set("later", 4, ttl=300)
    assert len(cache) == 3
    assert cache.get("long") == 2


def test_manual_sweep_and_clear() -> None:
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("a", 1, ttl=5)
    cache.set("b", 2, ttl=50)

    clock.advance(10)
    assert cache.sweep() == 1
    assert cache.get("b") == 2

    cache.clear()
    assert len(cache) == 0
