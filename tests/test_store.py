import json

from Log import Log
from Config import Config
from Store import build_url
from UdpJobsService import UdpJobsService
from PacketLibrary import SLOT_COUNT

def test_jobs_persist_and_reload_stopped(logger, store):
    svc = UdpJobsService(logger, store, bind_host = '127.0.0.1')
    svc.start()
    try:
        a = svc.create_job({'name': 'a', 'remoteIp': '10.1.1.1', 'remotePort': 7000, 'txPort': 7001, 'intervalMs': 25, 'bytes': [1, 2]})
        svc.create_job({'name': 'b', 'remoteIp': '10.1.1.2', 'remotePort': 7000, 'intervalMs': 25, 'bytes': [3]})
        svc.create_job({'name': 'c', 'remoteIp': '10.1.1.3', 'remotePort': 7000, 'intervalMs': 25, 'bytes': [4]})
        svc.delete_job(2)

    finally:
        svc.stop()

    reloaded = UdpJobsService(logger, store, bind_host = '127.0.0.1')
    reloaded.load()
    jobs = {job.id: job for job in reloaded.registry.all()}

    assert sorted(jobs) == [1, 3]
    assert jobs[1].name == 'a'
    assert jobs[1].tx_port == 7001
    assert jobs[1].payload == [1, 2]
    assert jobs[1].created_at == a.created_at
    assert not jobs[1].enabled
    assert jobs[1].stats.sends == 0
    assert reloaded.registry.next_id == 4

def test_invalid_stored_job_is_dropped(logger, store):
    store.save_jobs([
        {'id': 1, 'name': 'empty', 'remoteIp': '10.0.0.1', 'remotePort': 9, 'txPort': None, 'rxPort': None, 'intervalMs': 10, 'bytes': [], 'createdAt': 'x'},
        {'id': 2, 'name': 'ok', 'remoteIp': '10.0.0.1', 'remotePort': 9, 'txPort': None, 'rxPort': 9100, 'intervalMs': 10, 'bytes': [5], 'createdAt': 'y'},
    ])

    svc = UdpJobsService(logger, store)
    svc.load()

    assert [job.id for job in svc.registry.all()] == [2]
    assert svc.registry.get(2).rx_port == 9100

def test_packet_library(logger, store):
    svc = UdpJobsService(logger, store)
    updates = []
    svc.notifier.subscribe(updates.append)
    svc.load()

    assert svc.handle({'type': 'packets_save_slot', 'slot': 3, 'name': 'ping', 'note': 'n' * 300, 'bytes': [0x70]}) is None
    assert updates[-1]['type'] == 'packets_update'

    assert svc.handle({'type': 'packets_save_slot', 'slot': 26, 'bytes': [1]}) == {'type': 'error', 'message': 'Slot must be 1..25.'}
    assert svc.handle({'type': 'packets_save_slot', 'slot': 4, 'bytes': [1000]}) == {'type': 'error', 'message': 'Invalid bytes.'}

    reloaded = UdpJobsService(logger, store)
    reloaded.load()
    slots = reloaded.packets.snapshot()['slots']
    assert len(slots) == SLOT_COUNT
    assert slots[2]['name'] == 'ping'
    assert len(slots[2]['note']) == 256
    assert slots[2]['bytes'] == [0x70]

    reloaded.handle({'type': 'packets_delete_slot', 'slot': 3})
    assert reloaded.packets.get(3) == {'slot': 3, 'name': '', 'note': '', 'bytes': []}

def test_build_url(tmp_path):
    assert build_url({'type': 'sqlite', 'path': 'db/x.db'}, str(tmp_path)) == 'sqlite:///%s' % (tmp_path / 'db' / 'x.db')
    assert (tmp_path / 'db').is_dir()

    url = build_url({'type': 'mysql', 'username': 'u', 'password': 'p@ss', 'host': 'h', 'port': 3306, 'database': 'd', 'charset': 'utf8mb4'})
    assert url == 'mysql+pymysql://u:p%40ss@h:3306/d?charset=utf8mb4'

def test_config_merges_defaults(tmp_path):
    (tmp_path / 'etc').mkdir()
    (tmp_path / 'etc' / 'config.json').write_text(json.dumps({'udpjobs': {'max_workers': 8}, 'log': {'level': 'DEBUG'}}))

    config = Config(str(tmp_path)).config
    assert config['udpjobs']['max_workers'] == 8
    assert config['udpjobs']['sleep_cap_ms'] == 50
    assert config['log']['level'] == 'DEBUG'
    assert config['db']['type'] == 'sqlite'
    assert config['workpath'] == str(tmp_path)

def test_config_missing_file(tmp_path):
    config = Config(str(tmp_path)).config
    assert config['udpjobs']['guard_ms'] == 2

def test_log_writes_file_and_db(tmp_path, store):
    config = {'name': 'UdpJobsLogTest', 'workpath': str(tmp_path), 'log': {'level': 'INFO', 'path': 'log', 'console': False}}
    loggerObj = Log(config)
    loggerObj.add_db_handler(store)
    loggerObj.logger.info({'status': 'hello'})

    for handler in loggerObj.logger.handlers:
        handler.flush()

    assert "{'status': 'hello'}" in (tmp_path / 'log' / 'UdpJobsLogTest.log').read_text()

    with store.engine.connect() as conn:
        rows = conn.execute(store.log.select()).fetchall()

    assert rows[-1].level == 'INFO'
    assert rows[-1].func == 'test_log_writes_file_and_db'

    ## detach so other tests do not write into this store
    for handler in list(loggerObj.logger.handlers):
        loggerObj.logger.removeHandler(handler)
        handler.close()
