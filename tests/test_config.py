import json

from kernelmq.config import Configuration, env_float, env_int, load_configuration


def _write(tmp_path, data:dict):
    path = tmp_path / "conn.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_connection_file_ports_become_strings(tmp_path) -> None:
    path = _write(tmp_path, dict(transport="tcp", ip="127.0.0.1", shell_port=50001, control_port=50002,
        stdin_port=50003, iopub_port=50004, hb_port=50005, signature_scheme="hmac-sha256", key="abc",
        kernel_name="kernelmq"))
    config = load_configuration(path)
    assert config.shell_port == "50001"
    assert config.hb_port == "50005"
    assert config.key == "abc"
    assert config.addr(config.shell_port) == "tcp://127.0.0.1:50001"


def test_missing_ports_and_empty_scheme(tmp_path) -> None:
    config = Configuration.from_file(_write(tmp_path, dict(ip="0.0.0.0", signature_scheme="", key="dropped")))
    assert config.key == ""
    assert config.signature_scheme == ""
    assert config.shell_port == "" and config.iopub_port == ""
    assert config.transport == "tcp"


def test_write_round_trip(tmp_path) -> None:
    config = Configuration(shell_port="5555", key="k")
    path = tmp_path / "out.json"
    config.write(str(path))
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["shell_port"] == 5555
    assert data["control_port"] == 0
    assert Configuration.from_file(str(path)) == config


def test_ipc_address_uses_dash() -> None:
    config = Configuration(transport="ipc", ip="/tmp/kernel")
    assert config.addr("3") == "ipc:///tmp/kernel-3"


def test_env_knobs(monkeypatch) -> None:
    monkeypatch.setenv("KERNELMQ_TEST_KNOB", "2.5")
    assert env_float("KERNELMQ_TEST_KNOB", 1.0) == 2.5
    assert env_int("KERNELMQ_TEST_KNOB", 1) == 2
    monkeypatch.setenv("KERNELMQ_TEST_KNOB", "lots")
    assert env_float("KERNELMQ_TEST_KNOB", 1.0) == 1.0
    monkeypatch.delenv("KERNELMQ_TEST_KNOB")
    assert env_int("KERNELMQ_TEST_KNOB", 7) == 7
