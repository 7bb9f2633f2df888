import threading

import pytest
import zmq

from kernelmq.config import Configuration
from kernelmq.kernel import Kernel
from kernelmq.server import ControlMainServer, ShellMainServer, ZMQServer, make_server

from .kernel_utils import TIMEOUT, Client, EchoInterpreter, iopub_msgs, messenger_debugger, running_kernel

VARIANTS = ["zmq", "shell-main", "control-main"]


def test_make_server_variants() -> None:
    ctx = zmq.Context.instance()
    with pytest.raises(ValueError):
        make_server(ctx, Configuration(), "threads")
    assert {"zmq": ZMQServer, "shell-main": ShellMainServer, "control-main": ControlMainServer}.keys() == set(VARIANTS)


@pytest.mark.parametrize("server_name", VARIANTS)
def test_execute_round_trip(server_name) -> None:
    with running_kernel(server_name) as (_, _, client, _):
        msg_id = client.send(client.shell, "execute_request", dict(code="6*7", silent=False))
        reply = client.reply(client.shell, msg_id)
        outputs = client.iopub_until_idle(msg_id)
    assert reply["content"]["status"] == "ok"
    assert reply["content"]["execution_count"] == 1
    types = [m["msg_type"] for m in outputs]
    assert types == ["status", "execute_input", "execute_result", "status"]
    assert iopub_msgs(outputs, "execute_result")[0]["content"]["data"] == {"text/plain": "42"}


@pytest.mark.parametrize("server_name", VARIANTS)
def test_bad_signature_is_dropped(server_name) -> None:
    with running_kernel(server_name) as (_, config, client, _):
        rogue = Client(config, key="not-the-key")
        try:
            rogue.send(rogue.shell, "kernel_info_request")
            assert rogue.recv(rogue.shell, 0.5) is None
        finally: rogue.close()
        msg_id = client.send(client.shell, "kernel_info_request")
        assert client.reply(client.shell, msg_id)["content"]["status"] == "ok"


@pytest.mark.parametrize("server_name", VARIANTS)
def test_heartbeat_echo(server_name) -> None:
    with running_kernel(server_name) as (_, config, _, _):
        ctx = zmq.Context.instance()
        hb = ctx.socket(zmq.REQ)
        hb.linger = 0
        hb.connect(config.addr(config.hb_port))
        try:
            hb.send(b"ping")
            assert hb.poll(TIMEOUT * 1000)
            assert hb.recv() == b"ping"
        finally: hb.close(0)


@pytest.mark.parametrize("server_name", VARIANTS)
def test_control_messenger_reaches_shell(server_name) -> None:
    with running_kernel(server_name, debugger_builder=messenger_debugger) as (_, _, client, _):
        msg_id = client.send(client.control, "debug_request",
            dict(seq=1, type="request", command="evaluate", arguments={"expression": "x"}))
        reply = client.reply(client.control, msg_id)
    assert reply["msg_type"] == "debug_reply"
    assert reply["content"]["success"] is True
    assert reply["content"]["body"] == dict(status="ok", echo={"expression": "x"})


@pytest.mark.parametrize("server_name", VARIANTS)
def test_stdin_round_trip(server_name) -> None:
    with running_kernel(server_name) as (_, _, client, _):
        msg_id = client.send(client.shell, "execute_request", dict(code="input:Name? ", allow_stdin=True))
        asked = client.recv(client.stdin)
        assert asked is not None and asked["msg_type"] == "input_request"
        assert asked["content"]["prompt"] == "Name? "
        client.session.send(client.stdin, "input_reply", dict(value="alice"), parent=asked)
        assert client.reply(client.shell, msg_id)["content"]["status"] == "ok"
        outputs = client.iopub_until_idle(msg_id)
    stream, = iopub_msgs(outputs, "stream")
    assert stream["content"] == dict(name="stdout", text="alice")


@pytest.mark.parametrize("server_name", VARIANTS)
def test_shutdown_stops_every_worker(server_name) -> None:
    with running_kernel(server_name) as (kernel, _, client, thread):
        msg_id = client.send(client.control, "shutdown_request", dict(restart=False))
        reply = client.reply(client.control, msg_id)
        assert reply["content"] == dict(status="ok", restart=False)
        thread.join(TIMEOUT)
        assert not thread.is_alive()
        assert kernel.interpreter.shutdown_called


@pytest.mark.parametrize("server_name", VARIANTS)
def test_stop_before_start_returns_promptly(server_name) -> None:
    kernel = Kernel(Configuration(key="secret-key"), "tester", EchoInterpreter(), server_name=server_name)
    kernel.stop()
    thread = threading.Thread(target=kernel.start, name="kernel-under-test", daemon=True)
    thread.start()
    thread.join(TIMEOUT)
    assert not thread.is_alive()
    assert kernel.interpreter.shutdown_called


def test_ports_written_back_to_config() -> None:
    with running_kernel() as (_, config, _, _):
        ports = [config.shell_port, config.control_port, config.stdin_port, config.iopub_port, config.hb_port]
    assert all(p.isdigit() for p in ports)
    assert len(set(ports)) == 5
