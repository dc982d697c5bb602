import pytest

from alienbridge.config_loader import (
    ListenerConfig,
    ReaderConfig,
    get_listener_cfg,
    get_log_level,
    get_reader_cfg,
    get_sink_cfg,
    load_config,
)
from alienbridge.errors import ConfigError


def test_reader_defaults_when_absent():
    cfg = get_reader_cfg({})
    assert cfg == ReaderConfig()
    assert (cfg.address, cfg.port, cfg.username, cfg.password) == ("localhost", 20000, "alien", "password")
    assert cfg.notify_port == 20001
    assert cfg.login_timeout_s is None and cfg.command_timeout_s is None


def test_reader_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "reader:\n"
        "  address: 10.0.0.20\n"
        "  port: 23\n"
        "  name: Dock\n"
        "  antennas: [0, 2]\n"
        "  notify_port: 21001\n"
        "  timeouts: {login_s: 5, command_s: 2.5}\n"
        "  setup: {auto_stop_timer_ms: 250, timestamp_format: false}\n"
        "log:\n"
        "  level: debug\n",
        encoding="utf-8",
    )
    raw = load_config(path)
    cfg = get_reader_cfg(raw)

    assert cfg.address == "10.0.0.20"
    assert cfg.port == 23
    assert cfg.username == "alien"
    assert cfg.antennas == ("0", "2")
    assert cfg.login_timeout_s == 5.0
    assert cfg.command_timeout_s == 2.5
    assert cfg.auto_stop_timer_ms == 250
    assert cfg.timestamp_format is False
    assert get_log_level(raw) == "DEBUG"

    # listener follows the reader's notify port unless told otherwise
    assert get_listener_cfg(raw) == ListenerConfig(port=21001)


def test_antennas_as_string():
    assert get_reader_cfg({"reader": {"antennas": "0 1 3"}}).antennas == ("0", "1", "3")
    assert get_reader_cfg({"reader": {"antennas": 2}}).antennas == ("2",)


def test_listener_and_sink_sections():
    raw = {"notify": {"host": "127.0.0.1", "port": 30001}, "sink": {"mode": "http"}}
    listener = get_listener_cfg(raw)
    assert (listener.host, listener.port) == ("127.0.0.1", 30001)
    assert get_sink_cfg(raw) == {"mode": "http"}
    assert get_sink_cfg({}) == {}
    assert get_log_level({}) == "INFO"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError) as ei:
        load_config(tmp_path / "nope.yaml")
    assert "Missing configuration file" in str(ei.value)
    assert isinstance(ei.value, RuntimeError)


@pytest.mark.parametrize("text", ["- just\n- a list\n", "reader: 5\n", "reader: [unclosed\n"])
def test_bad_shapes(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_bad_timeout_value():
    with pytest.raises(ConfigError):
        get_reader_cfg({"reader": {"timeouts": {"command_s": "soon"}}})


def test_shipped_config_loads():
    raw = load_config()
    assert get_reader_cfg(raw) == ReaderConfig()


def test_port_zero_is_kept():
    # 0 asks the OS for an ephemeral port; it must not fall back to the default
    assert get_listener_cfg({"notify": {"port": 0}}).port == 0
    assert get_listener_cfg({"reader": {"notify_port": 0}}).port == 0
    assert get_reader_cfg({"reader": {"port": 0, "notify_port": 0}}).port == 0
    assert get_reader_cfg({"reader": {"notify_port": 0}}).notify_port == 0
    # an empty YAML value still means "use the default"
    assert get_reader_cfg({"reader": {"port": None}}).port == 20000


def test_bad_port_value():
    with pytest.raises(ConfigError):
        get_listener_cfg({"notify": {"port": "http"}})
