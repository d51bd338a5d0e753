import pytest
import logging

from Job import Job
from Scheduler import JobLoop
from Errors import TransmitError

class FakeClock(object):
    """Simulated millisecond clock, stops the job at a time limit."""

    def __init__(self, job, limit_ms):
        self.now = 0.0
        self.job = job
        self.limit_ms = limit_ms

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms
        if self.now >= self.limit_ms:
            self.job.request_stop()

    def wait(self, seconds):
        self.advance(round(seconds * 1000.0, 6))

    def yield_(self):
        self.advance(0.5)

class FakeEntry(object):
    def __init__(self, clock, stall_ms = 0, error = None):
        self.clock = clock
        self.stall_ms = stall_ms
        self.error = error
        self.sent = []

    def send(self, payload, ip, port):
        if self.error:
            raise self.error

        self.sent.append(self.clock.now)

        ## the first send stalls the whole process
        if self.stall_ms and len(self.sent) == 1:
            self.clock.now += self.stall_ms

        return len(payload)

class FakePool(object):
    def __init__(self, entry):
        self.entry = entry

    def lookup(self, key):
        return self.entry

class FakeNotifier(object):
    def __init__(self):
        self.updates = 0

    def job_update(self, job):
        self.updates += 1

def make_loop(limit_ms, interval_ms = 10, stall_ms = 0, error = None, entry = True):
    job = Job(1, 'tick', '127.0.0.1', 9000, None, None, interval_ms, [1, 2])
    job.arm()
    job.enabled = True
    clock = FakeClock(job, limit_ms)
    fake_entry = FakeEntry(clock, stall_ms, error) if entry else None
    notifier = FakeNotifier()
    loop = JobLoop(logging.getLogger('udpjobs.test'), job, FakePool(fake_entry), notifier, clock = clock, wait = clock.wait, yield_ = clock.yield_)
    return loop, job, fake_entry, notifier

def test_steady_rate():
    loop, job, entry, notifier = make_loop(limit_ms = 505)
    loop.run()

    assert job.stats.sends == 50
    assert job.stats.missed == 0
    assert notifier.updates == 50
    assert job.stats.sends_per_sec == 50

    ## fixed rate: every send lands on its deadline
    assert entry.sent[:3] == pytest.approx([10.0, 20.0, 30.0])

def test_stall_is_counted_not_burst():
    loop, job, entry, notifier = make_loop(limit_ms = 505, stall_ms = 500)
    loop.run()

    assert 49 <= job.stats.sends + job.stats.missed <= 52
    assert job.stats.missed >= 48
    assert job.stats.sends <= 3

def test_long_suspend_resets_schedule_without_missed():
    loop, job, entry, notifier = make_loop(limit_ms = 6015, stall_ms = 6000)
    loop.run()

    assert job.stats.sends == 1
    assert job.stats.missed == 0

def test_transmit_errors_do_not_stop_the_loop():
    loop, job, entry, notifier = make_loop(limit_ms = 55, error = TransmitError('network is unreachable'))
    loop.run()

    assert job.stats.sends == 0
    assert job.stats.last_err == 'network is unreachable'
    assert notifier.updates == 5

def test_closed_socket_recorded_as_error():
    loop, job, entry, notifier = make_loop(limit_ms = 25, entry = False)
    loop.run()

    assert job.stats.sends == 0
    assert 'is not open' in job.stats.last_err

def test_stop_flag_checked_before_first_tick():
    loop, job, entry, notifier = make_loop(limit_ms = 1000)
    job.request_stop()
    loop.run()

    assert job.stats.sends == 0
    assert notifier.updates == 0

def test_rate_window_prunes_old_sends():
    job = Job(1, 'rate', '127.0.0.1', 9000, None, None, 10, [1])
    for t in (0, 500, 1200, 1500):
        job.record_send(t)

    assert job.refresh_rate(1600) == 2
    assert list(job.rate_window) == [1200, 1500]
