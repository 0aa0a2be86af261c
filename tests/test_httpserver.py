import json
import threading
import urllib.error
import urllib.request

import pytest

from ngmonitor import httpserver
from ngmonitor.config import Log, get_default_config, get_global_config, store_global_config
from ngmonitor.docstore import DocumentStore
from ngmonitor.persist import load_config_from_storage


def _request(port, method, path, body=None):
    req = urllib.request.Request(f"http://127.0.0.1:{port}{path}", data=body, method=method)
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            return resp.status, resp.read()
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read()


@pytest.fixture
def server(tmp_path):
    srv = httpserver.create_server("127.0.0.1:0", Log(path=str(tmp_path)))
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()
    thread.join(5)


@pytest.fixture
def storage(tmp_path):
    store_global_config(get_default_config())
    db = DocumentStore(tmp_path / "docdb")
    load_config_from_storage(lambda: db)
    yield db
    db.close()
    store_global_config(get_default_config())


def test_health(server):
    status, body = _request(server.server_address[1], "GET", "/health")
    assert status == 200
    assert json.loads(body) == {"health": True}


def test_get_config(server, storage):
    status, body = _request(server.server_address[1], "GET", "/config")
    assert status == 200
    data = json.loads(body)
    assert len(body) > 10
    assert data["continuous_profiling"] == get_global_config().continue_profiling.to_dict()


def test_post_config(server, storage):
    body = b'{"continuous_profiling": {"enable": true,"profile_seconds":6,"interval_seconds":11}}'
    status, resp = _request(server.server_address[1], "POST", "/config", body)
    assert status == 200
    assert json.loads(resp) == {"status": "ok"}
    cfg = get_global_config()
    assert cfg.continue_profiling.enable is True
    assert cfg.continue_profiling.profile_seconds == 6
    assert cfg.continue_profiling.interval_seconds == 11


def test_post_invalid_config(server, storage):
    body = b'{"continuous_profiling": {"enable": true,"profile_seconds":1000,"interval_seconds":11}}'
    status, resp = _request(server.server_address[1], "POST", "/config", body)
    assert status == 503
    assert resp.decode() == (
        '{"message":"new config is invalid: {\\"data_retention_seconds\\":259200,'
        '\\"enable\\":true,\\"interval_seconds\\":11,\\"profile_seconds\\":1000,'
        '\\"timeout_seconds\\":120}","status":"error"}'
    )


def test_post_empty_body(server, storage):
    status, resp = _request(server.server_address[1], "POST", "/config", b"")
    assert status == 503
    assert resp.decode() == '{"message":"EOF","status":"error"}'


def test_post_unknown_module(server, storage):
    body = b'{"unknown_module": {"enable": true}}'
    status, resp = _request(server.server_address[1], "POST", "/config", body)
    assert status == 503
    assert resp.decode() == (
        '{"message":"config unknown_module not support modify or unknow","status":"error"}'
    )


def test_unknown_path(server):
    status, _ = _request(server.server_address[1], "GET", "/nothing-here")
    assert status == 404


def test_requests_are_logged(server, tmp_path):
    status, body = _request(server.server_address[1], "GET", "/health")
    assert status == 200
    assert json.loads(body) == {"health": True}
    content = (tmp_path / "service.log").read_text()
    assert '"/health"' in content
    assert "GET" in content


def test_create_server_rejects_bad_address():
    with pytest.raises(ValueError):
        httpserver.create_server("no-port", Log())


def test_start_and_stop(tmp_path):
    cfg = get_default_config()
    cfg.address = "127.0.0.1:0"
    cfg.log.path = str(tmp_path)
    srv = httpserver.start(cfg)
    port = srv.server_address[1]
    try:
        status, body = _request(port, "GET", "/health")
        assert status == 200
        assert json.loads(body)["health"] is True
    finally:
        httpserver.stop()
    with pytest.raises(urllib.error.URLError):
        urllib.request.urlopen(f"http://127.0.0.1:{port}/health", timeout=2)