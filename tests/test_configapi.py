import json

import pytest

from ngmonitor.config import (
    ConfigError,
    get_default_config,
    get_global_config,
    reload_config,
    store_global_config,
)
from ngmonitor.configapi import (
    handle_continue_profiling_config_modify,
    handle_get_config,
    handle_modify_config,
    handle_post_config,
)
from ngmonitor.docstore import DocumentStore
from ngmonitor.persist import CONFIG_TABLE_NAME, load_config_from_storage


@pytest.fixture
def db(tmp_path):
    store = DocumentStore(tmp_path / "db")
    store_global_config(get_default_config())
    load_config_from_storage(lambda: store)
    yield store
    store.close()
    store_global_config(get_default_config())


def test_get_config(db):
    status, payload = handle_get_config()
    assert status == 200
    assert len(json.dumps(payload)) > 10
    assert payload == get_global_config().to_dict()
    assert payload["continuous_profiling"] == get_default_config().continue_profiling.to_dict()


def test_http_service(db):
    status, payload = handle_post_config(
        b'{"continuous_profiling": {"enable": true,"profile_seconds":6,"interval_seconds":11}}'
    )
    assert status == 200
    assert payload == {"status": "ok"}
    cfg = get_global_config()
    assert cfg.continue_profiling.enable is True
    assert cfg.continue_profiling.profile_seconds == 6
    assert cfg.continue_profiling.interval_seconds == 11

    status, payload = handle_post_config(
        b'{"continuous_profiling": {"enable": true,"profile_seconds":1000,"interval_seconds":11}}'
    )
    assert status == 503
    assert payload == {
        "message": 'new config is invalid: {"data_retention_seconds":259200,"enable":true,'
        '"interval_seconds":11,"profile_seconds":1000,"timeout_seconds":120}',
        "status": "error",
    }

    status, payload = handle_post_config(b"")
    assert status == 503
    assert payload == {"message": "EOF", "status": "error"}

    status, payload = handle_post_config(b'{"unknown_module": {"enable": true}}')
    assert status == 503
    assert payload == {
        "message": "config unknown_module not support modify or unknow",
        "status": "error",
    }

    cfg = get_global_config()
    assert cfg.continue_profiling.enable is True
    assert cfg.continue_profiling.profile_seconds == 6
    assert cfg.continue_profiling.interval_seconds == 11


def test_successful_change_is_persisted(db):
    handle_post_config('{"continuous_profiling": {"enable": true}}')
    rows = db.query(f"SELECT config FROM {CONFIG_TABLE_NAME}")
    assert len(rows) == 1
    assert json.loads(rows[0][0])["enable"] is True


def test_combine_http_with_file(db, tmp_path):
    cfg_file = tmp_path / "test-cfg.toml"
    cfg_file.write_text("")

    handle_post_config(b'{"continuous_profiling": {"enable": true}}')
    assert get_global_config().continue_profiling.enable is True

    cfg_file.write_text('[pd]\nendpoints = ["10.0.1.8:2379"]')
    reload_config(cfg_file)
    cfg = get_global_config()
    assert cfg.continue_profiling.enable is True
    assert cfg.pd.endpoints == ["10.0.1.8:2379"]

    handle_post_config(b'{"continuous_profiling": {"enable": false}}')
    cfg = get_global_config()
    assert cfg.continue_profiling.enable is False
    assert cfg.pd.endpoints == ["10.0.1.8:2379"]

    cfg_file.write_text('[pd]\nendpoints = ["10.0.1.8:2479"]')
    reload_config(cfg_file)
    cfg = get_global_config()
    assert cfg.continue_profiling.enable is False
    assert cfg.pd.endpoints == ["10.0.1.8:2479"]


def test_unknown_profiling_key(db):
    with pytest.raises(ConfigError, match="unknown config `nope`"):
        handle_continue_profiling_config_modify({"nope": 1})
    assert get_global_config().continue_profiling == get_default_config().continue_profiling


def test_wrong_value_type_rejected(db):
    with pytest.raises(ConfigError):
        handle_continue_profiling_config_modify({"profile_seconds": "six"})
    assert get_global_config().continue_profiling.profile_seconds == 10


def test_module_value_must_be_object(db):
    with pytest.raises(ConfigError, match="continuous_profiling config value is invalid: 1"):
        handle_modify_config(b'{"continuous_profiling": 1}')


def test_non_object_body_rejected(db):
    with pytest.raises(ConfigError):
        handle_modify_config(b"[1, 2]")


def test_malformed_body_reports_error(db):
    status, payload = handle_post_config(b"{broken")
    assert status == 503
    assert payload["status"] == "error"