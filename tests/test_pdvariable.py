import queue

import pytest

from ngmonitor import pdvariable
from ngmonitor.pdvariable import (
    GLOBAL_CONFIG_PATH,
    PDVariable,
    VariableLoader,
    parse_global_config,
)

KEY = GLOBAL_CONFIG_PATH + "enable_resource_metering"
UNKNOWN = GLOBAL_CONFIG_PATH + "unknown"


class FakeStore:
    def __init__(self):
        self.data = {}

    def fetch_all(self):
        return list(self.data.items())

    def put(self, loader, key, value):
        self.data[key] = value
        loader.apply_events([(key, value)])


@pytest.mark.parametrize("init", [True, False])
def test_subscribe_follows_changes(init):
    store = FakeStore()
    if init:
        store.data[KEY] = "false"
    loader = VariableLoader(store.fetch_all)
    loader.refresh()

    sub = loader.subscribe()
    get_vars = sub.get_nowait()
    assert get_vars().enable_top_sql is False

    store.put(loader, UNKNOWN, "false")
    store.put(loader, UNKNOWN, "abcd")
    store.put(loader, KEY, "true")
    get_vars = sub.get_nowait()
    assert get_vars().enable_top_sql is True

    store.put(loader, KEY, "false")
    store.put(loader, KEY, "false")
    store.put(loader, KEY, "true")
    get_vars = sub.get_nowait()
    assert get_vars().enable_top_sql is True

    store.put(loader, KEY, "true")
    store.put(loader, KEY, "false")
    store.put(loader, KEY, "true")
    get_vars = sub.get_nowait()
    assert get_vars().enable_top_sql is True

    store.put(loader, KEY, "false")
    store.put(loader, KEY, "true")
    store.put(loader, KEY, "false")
    get_vars = sub.get_nowait()
    assert get_vars().enable_top_sql is False
    loader.stop()


@pytest.mark.parametrize("value", ["1", "t", "T", "TRUE", "true", "True"])
def test_parse_true_words(value):
    assert parse_global_config(KEY, value, PDVariable()).enable_top_sql is True


@pytest.mark.parametrize("value", ["0", "f", "F", "FALSE", "false", "False"])
def test_parse_false_words(value):
    start = PDVariable(enable_top_sql=True)
    assert parse_global_config(KEY, value, start).enable_top_sql is False


def test_parse_invalid_value_raises():
    with pytest.raises(ValueError, match="enable_resource_metering has invalid value: abcd"):
        parse_global_config(KEY, "abcd", PDVariable())


def test_parse_unknown_key_keeps_variable():
    start = PDVariable(enable_top_sql=True)
    assert parse_global_config(UNKNOWN, "abcd", start) == start


def test_load_all_empty_gives_default():
    loader = VariableLoader(lambda: [])
    assert loader.load_all() == PDVariable(enable_top_sql=False)


def test_load_all_parse_error_raises():
    loader = VariableLoader(lambda: [(KEY, "nope")])
    with pytest.raises(ValueError):
        loader.load_all()


def test_load_all_retries_failed_fetch(monkeypatch):
    monkeypatch.setattr(pdvariable, "DEFAULT_RETRY_INTERVAL", 0)
    calls = []

    def fetch():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("unavailable")
        return [(KEY, "true")]

    loader = VariableLoader(fetch)
    assert loader.load_all().enable_top_sql is True
    assert len(calls) == 3


def test_load_all_gives_up_after_retries(monkeypatch):
    monkeypatch.setattr(pdvariable, "DEFAULT_RETRY_INTERVAL", 0)
    calls = []

    def fetch():
        calls.append(1)
        raise ConnectionError("unavailable")

    loader = VariableLoader(fetch)
    with pytest.raises(ConnectionError):
        loader.load_all()
    assert len(calls) == pdvariable.DEFAULT_RETRY_CNT


def test_refresh_failure_keeps_current(monkeypatch):
    monkeypatch.setattr(pdvariable, "DEFAULT_RETRY_INTERVAL", 0)
    store = FakeStore()
    store.data[KEY] = "true"
    loader = VariableLoader(store.fetch_all)
    assert loader.refresh().enable_top_sql is True
    store.data[KEY] = "garbage"
    assert loader.refresh().enable_top_sql is True


def test_refresh_without_change_does_not_notify():
    store = FakeStore()
    loader = VariableLoader(store.fetch_all)
    sub = loader.subscribe()
    sub.get_nowait()
    loader.refresh()
    with pytest.raises(queue.Empty):
        sub.get_nowait()


def test_invalid_event_is_ignored():
    loader = VariableLoader(lambda: [])
    result = loader.apply_events([(KEY, "true"), (KEY, "abcd")])
    assert result.enable_top_sql is True


def test_stop_closes_subscribers():
    loader = VariableLoader(lambda: [])
    sub = loader.subscribe()
    loader.stop()
    assert sub.get_nowait() is None
    with pytest.raises(RuntimeError):
        loader.load_all()