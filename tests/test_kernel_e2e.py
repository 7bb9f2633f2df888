import time

import pytest

from .kernel_utils import TIMEOUT, drain_iopub, get_shell_reply, iopub_msgs, load_connection, start_kernel


def _wait_for(kc, msg_id:str, msg_type:str)->dict:
    deadline = time.time() + TIMEOUT
    while time.time() < deadline:
        msg = kc.get_iopub_msg(timeout=TIMEOUT)
        if msg["parent_header"].get("msg_id") == msg_id and msg["msg_type"] == msg_type: return msg
    raise AssertionError(f"timeout waiting for {msg_type}")


def test_kernel_info_and_connection_file() -> None:
    with start_kernel() as (km, kc):
        reply = kc.kernel_info(reply=True, timeout=TIMEOUT)
        conn = load_connection(km)
    content = reply["content"]
    assert content["status"] == "ok"
    assert content["implementation"] == "kernelmq"
    assert content["language_info"]["name"] == "python"
    assert content["debugger"] is False
    assert conn["signature_scheme"] == "hmac-sha256"


def test_execute_result_and_stream() -> None:
    with start_kernel() as (_, kc):
        msg_id = kc.execute("print('hello')\n1+1")
        reply = get_shell_reply(kc, msg_id)
        outputs = drain_iopub(kc, msg_id)
    assert reply["content"]["status"] == "ok"
    assert reply["content"]["execution_count"] == 1
    assert [m["msg_type"] for m in outputs][0] == "status"
    assert iopub_msgs(outputs, "execute_input")[0]["content"]["execution_count"] == 1
    stream, = iopub_msgs(outputs, "stream")
    assert stream["content"] == dict(name="stdout", text="hello\n")
    result, = iopub_msgs(outputs, "execute_result")
    assert result["content"]["data"]["text/plain"] == "2"


def test_execute_error() -> None:
    with start_kernel() as (_, kc):
        msg_id = kc.execute("1/0")
        reply = get_shell_reply(kc, msg_id)
        outputs = drain_iopub(kc, msg_id)
    assert reply["content"]["status"] == "error"
    assert reply["content"]["ename"] == "ZeroDivisionError"
    err, = iopub_msgs(outputs, "error")
    assert err["content"]["ename"] == "ZeroDivisionError"


def test_complete_and_is_complete() -> None:
    with start_kernel() as (_, kc):
        kc.execute_interactive("alpha_value = 1", timeout=TIMEOUT)
        comp = get_shell_reply(kc, kc.complete("alpha_v"))
        incomplete = get_shell_reply(kc, kc.is_complete("for i in range(3):"))
        complete = get_shell_reply(kc, kc.is_complete("x = 1"))
    assert "alpha_value" in comp["content"]["matches"]
    assert comp["content"]["cursor_end"] == len("alpha_v")
    assert incomplete["content"]["status"] == "incomplete"
    assert incomplete["content"]["indent"] == "    "
    assert complete["content"]["status"] == "complete"


def test_history_after_executes() -> None:
    with start_kernel() as (_, kc):
        for code in ("a = 1", "b = 2"): kc.execute_interactive(code, timeout=TIMEOUT)
        msg_id = kc.history(hist_access_type="tail", n=2, output=False, raw=True)
        reply = get_shell_reply(kc, msg_id)
    assert [entry[2] for entry in reply["content"]["history"]] == ["a = 1", "b = 2"]


def test_comm_open_unknown_target_closes() -> None:
    with start_kernel() as (_, kc):
        msg = kc.session.msg("comm_open", dict(comm_id="c-1", target_name="nobody", data={}))
        kc.shell_channel.send(msg)
        outputs = drain_iopub(kc, msg["header"]["msg_id"])
        info = get_shell_reply(kc, kc.comm_info())
    closed, = iopub_msgs(outputs, "comm_close")
    assert closed["content"]["comm_id"] == "c-1"
    assert info["content"]["comms"] == {}


def test_input_request() -> None:
    with start_kernel() as (_, kc):
        msg_id = kc.execute("name = input('Name? ')", allow_stdin=True)
        asked = kc.get_stdin_msg(timeout=TIMEOUT)
        assert asked["msg_type"] == "input_request"
        assert asked["content"]["prompt"] == "Name? "
        kc.input("alice")
        assert get_shell_reply(kc, msg_id)["content"]["status"] == "ok"
        check = kc.execute("name")
        get_shell_reply(kc, check)
        outputs = drain_iopub(kc, check)
    assert iopub_msgs(outputs, "execute_result")[0]["content"]["data"]["text/plain"] == "'alice'"


def test_input_without_stdin_fails() -> None:
    with start_kernel() as (_, kc):
        msg_id = kc.execute("input('x')", allow_stdin=False)
        reply = get_shell_reply(kc, msg_id)
    assert reply["content"]["status"] == "error"
    assert reply["content"]["ename"] == "StdinNotImplementedError"


@pytest.mark.parametrize("server_name", ["zmq", "shell-main", "control-main"])
def test_interrupt_running_cell(server_name) -> None:
    with start_kernel(server_name) as (km, kc):
        msg_id = kc.execute("import time\nfor _ in range(600): time.sleep(0.05)")
        _wait_for(kc, msg_id, "execute_input")
        time.sleep(0.2)
        km.interrupt_kernel()
        reply = get_shell_reply(kc, msg_id)
        assert reply["content"]["status"] == "error"
        assert reply["content"]["ename"] == "KeyboardInterrupt"
        after = kc.execute("40+2")
        assert get_shell_reply(kc, after)["content"]["status"] == "ok"
        info = kc.session.msg("kernel_info_request")
        kc.control_channel.send(info)
        assert kc.get_control_msg(timeout=TIMEOUT)["parent_header"]["msg_id"] == info["header"]["msg_id"]
        kc.shutdown()
        deadline = time.time() + TIMEOUT
        while km.is_alive() and time.time() < deadline: time.sleep(0.1)
        assert not km.is_alive()


def test_shutdown_request_ends_process() -> None:
    with start_kernel() as (km, kc):
        assert km.is_alive()
        msg_id = kc.shutdown()
        reply = kc.get_control_msg(timeout=TIMEOUT)
        assert reply["parent_header"]["msg_id"] == msg_id
        assert reply["content"]["status"] == "ok"
        deadline = time.time() + TIMEOUT
        while km.is_alive() and time.time() < deadline: time.sleep(0.1)
        assert not km.is_alive()
