## import build in pkgs
import os
import sys
import time
import socket
import logging
import pytest

## Resolve project root directory
workpath = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))

## Extend Python module search path for project libraries
sys.path.append("%s/lib" % (workpath))

from Store import Store
from UdpJobsService import UdpJobsService

def wait_until(predicate, timeout = 2.0, step = 0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True

        time.sleep(step)

    return predicate()

def free_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.bind(('127.0.0.1', 0))
    port = s.getsockname()[1]
    s.close()
    return port

@pytest.fixture
def logger():
    return logging.getLogger('udpjobs.test')

@pytest.fixture
def receiver():
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.bind(('127.0.0.1', 0))
    s.settimeout(2.0)
    yield s
    s.close()

@pytest.fixture
def store(logger, tmp_path):
    st = Store(logger, 'sqlite:///%s' % (tmp_path / 'udpjobs.db'))
    st.init()
    yield st
    st.dispose()

@pytest.fixture
def service(logger):
    svc = UdpJobsService(logger, None, bind_host = '127.0.0.1', recv_timeout = 0.05)
    svc.start()
    yield svc
    svc.stop()
