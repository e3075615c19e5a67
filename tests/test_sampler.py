import logging

from tcpspeed.transfer import ByteCounter, LiveSampler, SpeedSample


class ScriptedCounter:
    """Counter whose readings follow a script, then hold the last value."""

    def __init__(self, readings):
        self._readings = iter(readings)
        self._last = 0

    @property
    def value(self):
        self._last = next(self._readings, self._last)
        return self._last


class FakeClock:
    """Advances by `tick` seconds on every reading."""

    def __init__(self, tick=0.1):
        self.now = 0.0
        self.tick = tick
        self.sleeps = []

    def __call__(self):
        self.now += self.tick
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_sampler(counter, target, clock, **kwargs):
    return LiveSampler(counter, target, clock=clock, sleep=clock.sleep, **kwargs)


def test_samples_only_after_step_is_exceeded():
    clock = FakeClock()
    counter = ScriptedCounter([0, 50, 150, 160, 400, 3200])
    sampler = make_sampler(counter, 3200, clock)  # step = 100

    sampler.run()

    assert [s.delta_bytes for s in sampler.samples] == [150, 250, 2800]
    assert all(s.delta_bytes > sampler.step for s in sampler.samples)
    assert all(s.bits_per_second >= 0 for s in sampler.samples)
    assert not sampler.timed_out


def test_delta_equal_to_step_is_not_reported():
    clock = FakeClock()
    counter = ScriptedCounter([100, 200, 3200])
    sampler = make_sampler(counter, 3200, clock)

    sampler.run()

    assert [s.delta_bytes for s in sampler.samples] == [200, 3000]


def test_watchdog_stops_a_stalled_transfer():
    clock = FakeClock(tick=1.0)
    sampler = make_sampler(ScriptedCounter([10]), 3200, clock, watchdog=20.0)

    sampler.run()

    assert sampler.timed_out
    assert sampler.samples == []
    assert clock.now > 20.0


def test_poll_interval_is_a_quarter_of_elapsed_capped_at_one_second():
    clock = FakeClock(tick=1.0)
    sampler = make_sampler(ScriptedCounter([0]), 3200, clock, watchdog=20.0)

    sampler.run()

    assert clock.sleeps[0] == 0.25
    assert max(clock.sleeps) == 1.0


def test_sampler_never_writes_to_counter():
    clock = FakeClock()
    counter = ByteCounter()
    counter.add(1000)
    sampler = make_sampler(counter, 1000, clock)

    sampler.run()

    assert counter.value == 1000
    assert len(sampler.samples) == 1


def test_samples_are_logged_and_forwarded(caplog):
    received = []
    clock = FakeClock()
    log = logging.getLogger("tests.sampler")
    sampler = make_sampler(ScriptedCounter([0, 3200]), 3200, clock,
                           log=log, on_sample=received.append)

    with caplog.at_level(logging.INFO, logger="tests.sampler"):
        sampler.run()

    assert received == sampler.samples
    assert "Speed now" in caplog.text


def test_background_sampler_can_be_stopped():
    sampler = LiveSampler(ByteCounter(), 10_000).start()
    assert sampler.is_alive

    sampler.stop()
    sampler.join(timeout=2)

    assert not sampler.is_alive
    assert not sampler.timed_out


def test_speed_sample_rate():
    sample = SpeedSample(timestamp=1.0, delta_bytes=1_000_000, elapsed=2.0)
    assert sample.bits_per_second == 4_000_000
    assert SpeedSample(timestamp=0.0, delta_bytes=10, elapsed=0.0).bits_per_second == 0.0
