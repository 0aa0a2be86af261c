import pytest

from ngmonitor import docstore
from ngmonitor.config import get_default_config
from ngmonitor.main import (
    _build_parser,
    init_database,
    main,
    must_create_dirs,
    override_config,
    stop_database,
)


def test_version_prints_info(capsys):
    assert main(["--version"]) == 0
    out = capsys.readouterr().out
    assert "Git Commit Hash: None" in out
    assert "Git Branch: None" in out


def test_short_version_flag(capsys):
    assert main(["-V"]) == 0
    assert "UTC Build Time: None" in capsys.readouterr().out


def test_override_config_applies_given_flags():
    args = _build_parser().parse_args(
        [
            "--address", "127.0.0.1:12345",
            "--pd.endpoints", "10.0.0.1:2379,10.0.0.2:2379",
            "--pd.endpoints", "10.0.0.3:2379",
            "--storage.path", "store",
            "--retention-period", "2",
        ]
    )
    cfg = get_default_config()
    override_config(args, cfg)
    assert cfg.address == "127.0.0.1:12345"
    assert cfg.pd.endpoints == ["10.0.0.1:2379", "10.0.0.2:2379", "10.0.0.3:2379"]
    assert cfg.storage.path == "store"
    assert cfg.tsdb.retention_period == "2"


def test_override_config_leaves_unset_flags():
    args = _build_parser().parse_args([])
    cfg = get_default_config()
    override_config(args, cfg)
    assert cfg == get_default_config()


def test_invalid_address_fails(capsys):
    assert main(["--address", "no-port"]) == 1
    assert "Failed to initialize config" in capsys.readouterr().err


def test_missing_config_file_fails(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.toml")]) == 1
    assert "Failed to initialize config" in capsys.readouterr().err


def test_must_create_dirs(tmp_path):
    cfg = get_default_config()
    cfg.log.path = str(tmp_path / "logs")
    cfg.storage.path = str(tmp_path / "data")
    must_create_dirs(cfg)
    assert (tmp_path / "logs").is_dir()
    assert (tmp_path / "data").is_dir()


def test_must_create_dirs_without_log_path(tmp_path):
    cfg = get_default_config()
    cfg.storage.path = str(tmp_path / "data")
    must_create_dirs(cfg)
    assert (tmp_path / "data").is_dir()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["data"]


def test_must_create_dirs_reports_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    cfg = get_default_config()
    cfg.storage.path = str(blocker / "data")
    with pytest.raises(OSError):
        must_create_dirs(cfg)


def test_init_and_stop_database(tmp_path):
    cfg = get_default_config()
    cfg.storage.path = str(tmp_path)
    store = init_database(cfg)
    try:
        assert docstore.get() is store
        assert (tmp_path / "docdb").is_dir()
        assert (tmp_path / "tsdb-log" / "tsdb.log").exists()
    finally:
        stop_database()
    assert docstore.get() is None