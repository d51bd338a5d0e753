"""
Job Send Loop Module

This module implements the per-job periodic send loop.

The loop keeps a fixed rate schedule: each deadline is one
interval after the previous deadline, not after the previous
send, so jitter in one tick does not shift later ticks. When the
loop falls more than one interval behind (process stall), the
skipped ticks are counted as missed instead of being sent in a
burst.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import time
from typing import Callable, Optional

## import private pkgs
from Errors import TransmitError

def monotonic_ms() -> float:
    return time.perf_counter() * 1000.0

def cooperative_yield() -> None:
    time.sleep(0)

class JobLoop(object):
    """
    Drift compensated send loop of one job.

    The loop runs until the stop flag captured at construction
    is set. Clock, wait and yield are injectable so timing can
    be driven by a simulated clock.
    """

    def __init__(self, logger: object, job: object, pool: object, notifier: object, guard_ms: float = 2.0, sleep_cap_ms: float = 50.0, resync_ms: float = 5000.0, clock: Callable[[], float] = monotonic_ms, wait: Optional[Callable[[float], object]] = None, yield_: Callable[[], None] = cooperative_yield) -> None:
        """
        Initialize the send loop.

        Args:
            logger (object): Application logger
            job (Job): Job to run, already armed with a fresh stop flag
            pool (SocketPool): Pool holding the job tx socket
            notifier (Notifier): Destination of job_update events
            guard_ms (float): Below this remaining time the loop yields instead of waiting
            sleep_cap_ms (float): Longest single wait
            resync_ms (float): Lag after which the schedule is reset
            clock (callable): Monotonic clock in milliseconds
            wait (callable): Wait for the given seconds, returns early on stop
            yield_ (callable): Zero delay yield

        Returns:
            None
        """

        self.logger = logger
        self.job = job
        self.pool = pool
        self.notifier = notifier
        self.guard_ms = guard_ms
        self.sleep_cap_ms = sleep_cap_ms
        self.resync_ms = resync_ms
        self.clock = clock
        self.yield_ = yield_

        ## stop flag of this run only
        self.stop_event = job.stop_event
        self.wait = wait if wait is not None else self.stop_event.wait

    def run(self) -> None:
        """
        Run ticks until the stop flag is set.

        Exceptions other than send failures propagate to the caller,
        which turns them into a job stop.

        Returns:
            None
        """

        job = self.job
        interval = max(1, int(job.interval_ms))
        next_t = self.clock() + interval
        self.logger.info({'job': job.id, 'status': 'loop start', 'interval_ms': interval})

        while not self.stop_event.is_set():
            t = self.clock()
            dt = next_t - t

            ## far from the deadline: bounded wait, wakes on stop
            if dt > self.guard_ms:
                self.wait(min(self.sleep_cap_ms, dt - 1) / 1000.0)
                continue

            ## close to the deadline: do not oversleep
            if dt > 0:
                self.yield_()
                continue

            next_t = self.tick(t, next_t, interval)

        self.logger.info({'job': job.id, 'status': 'loop end', 'sends': job.stats.sends, 'missed': job.stats.missed})

    def tick(self, t: float, next_t: float, interval: int) -> float:
        """
        Fire one due tick.

        Args:
            t (float): Current clock value in milliseconds
            next_t (float): Deadline being served
            interval (int): Interval in milliseconds

        Returns:
            float: Next deadline
        """

        job = self.job

        ## stalled for more than a whole interval: skip, do not burst
        if t - next_t > interval:
            missed = int((t - next_t) // interval)
            job.stats.missed += missed
            next_t += missed * interval

        try:
            self.send()
            job.record_send(self.clock())

        except (TransmitError, OSError) as e:
            ## a send racing a stop finds its socket released
            if not self.stop_event.is_set():
                job.stats.last_err = str(e)

        job.refresh_rate(self.clock())
        self.notifier.job_update(job)

        next_t += interval

        ## long suspend: restart the schedule, missed ticks are not credited
        now = self.clock()
        if next_t < now - self.resync_ms:
            next_t = now + interval

        return next_t

    def send(self) -> None:
        job = self.job
        entry = self.pool.lookup(job.tx_key)
        if entry is None:
            raise TransmitError('tx socket %s is not open' % (job.tx_key))

        entry.send(job.payload, job.remote_ip, job.remote_port)
