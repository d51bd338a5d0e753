import socket
import threading
import pytest

from PortKey import PortKey
from Notifier import Notifier
from SocketPool import SocketPool
from JobRegistry import JobRegistry
from Errors import BindError, TransmitError
from conftest import wait_until, free_port

@pytest.fixture
def events():
    return []

@pytest.fixture
def registry(logger):
    return JobRegistry(logger)

@pytest.fixture
def pool(logger, registry, events):
    notifier = Notifier(logger)
    notifier.subscribe(events.append)
    p = SocketPool(logger, registry, notifier, bind_host = '127.0.0.1', recv_timeout = 0.05)
    yield p
    p.close_all()

def test_port_key_tags():
    assert PortKey.from_port(None) == PortKey.ephemeral()
    assert PortKey.from_port(9000) == PortKey.explicit(9000)
    assert PortKey.ephemeral() != PortKey.explicit(9000)
    assert PortKey.ephemeral().bind_port == 0
    assert str(PortKey.ephemeral()) == 'ephemeral'

def test_acquire_reuses_entry_and_closes_at_zero(pool):
    key = PortKey.explicit(free_port())
    first = pool.acquire_or_create(key)
    pool.retain(key)
    second = pool.acquire_or_create(key)
    pool.retain(key)

    assert first is second
    assert pool.refcount(key) == 2

    pool.release(key)
    assert pool.lookup(key) is first
    assert not first.closed.is_set()

    pool.release(key)
    assert pool.lookup(key) is None
    assert first.closed.is_set()
    assert wait_until(lambda: not first.thread.is_alive())

def test_release_absent_key_is_noop(pool):
    pool.release(PortKey.explicit(1))
    pool.retain(PortKey.explicit(1))
    assert pool.keys() == []

def test_bind_conflict_registers_nothing(pool):
    blocker = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    blocker.bind(('127.0.0.1', 0))
    key = PortKey.explicit(blocker.getsockname()[1])
    try:
        with pytest.raises(BindError) as info:
            pool.acquire_or_create(key)

        assert info.value.port == key.port
        assert pool.lookup(key) is None

    finally:
        blocker.close()

def test_concurrent_acquire_binds_once(pool):
    key = PortKey.explicit(free_port())
    entries = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        entries.append(pool.acquire(key))

    threads = [threading.Thread(target = worker) for _ in range(8)]
    for t in threads:
        t.start()

    for t in threads:
        t.join()

    assert len(set(map(id, entries))) == 1
    assert pool.refcount(key) == 8

def test_borrow_leaves_no_entry(pool):
    key = PortKey.ephemeral()
    with pool.borrow(key) as entry:
        assert pool.refcount(key) == 1
        assert entry.local_port > 0

    assert pool.lookup(key) is None

def test_borrow_keeps_entry_held_by_others(pool):
    key = PortKey.ephemeral()
    held = pool.acquire(key)
    with pool.borrow(key) as entry:
        assert entry is held
        assert pool.refcount(key) == 2

    assert pool.refcount(key) == 1

def test_fan_out_skips_disabled_and_missing_jobs(pool, registry, events):
    rx_port = free_port()
    a = registry.create({'remoteIp': '127.0.0.1', 'remotePort': 9, 'rxPort': rx_port, 'intervalMs': 10, 'bytes': [1]})
    b = registry.create({'remoteIp': '127.0.0.1', 'remotePort': 9, 'rxPort': rx_port, 'intervalMs': 10, 'bytes': [1]})
    a.enabled = True

    key = PortKey.explicit(rx_port)
    pool.acquire(key)
    pool.add_listener(key, a.id)
    pool.add_listener(key, b.id)

    ## listener whose job is gone
    pool.add_listener(key, 99)

    sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sender.sendto(b'\x01\xff', ('127.0.0.1', rx_port))
        assert wait_until(lambda: len(events) >= 1)

    finally:
        sender.close()

    ## give a second delivery the chance to show up
    assert not wait_until(lambda: len(events) > 1, timeout = 0.2)

    (event,) = events
    assert event['type'] == 'udp_rx'
    assert event['jobId'] == a.id
    assert event['rxPort'] == rx_port
    assert event['bytes'] == [1, 255]
    assert event['from']['address'] == '127.0.0.1'

def test_send_on_closed_entry_raises(pool):
    key = PortKey.ephemeral()
    entry = pool.acquire(key)
    pool.release(key)

    with pytest.raises(TransmitError):
        entry.send([1], '127.0.0.1', 9)
