import pytest
from jupyter_client.session import Session

from kernelmq.auth import make_authentication
from kernelmq.message import Message, PubMessage, make_header
from kernelmq.serializer import (DELIMITER, DelimiterError, PayloadError, SignatureError, WireError, deserialize,
    deserialize_iopub, serialize, serialize_iopub)

AUTH = make_authentication("hmac-sha256", "secret")


def _msg(**kw) -> Message:
    header = make_header("execute_request", "u", "s")
    parent = make_header("kernel_info_request", "u", "s")
    return Message(identities=[b"router-a", b"router-b"], header=header, parent_header=parent,
        metadata={"started": "now"}, content={"code": "print('é')", "silent": False}, buffers=[b"\x00\x01", b"raw"], **kw)


@pytest.mark.parametrize("auth", [make_authentication("none"), AUTH])
def test_round_trip(auth) -> None:
    msg = _msg()
    frames = serialize(msg, auth)
    assert frames[:3] == [b"router-a", b"router-b", DELIMITER]
    assert frames[-2:] == [b"\x00\x01", b"raw"]
    assert deserialize(frames, auth) == msg


def test_iopub_round_trip_uses_topic_frame() -> None:
    msg = PubMessage(topic="kernel_core.k.status", header=make_header("status", "u", "s"),
        content={"execution_state": "busy"})
    frames = serialize_iopub(msg, AUTH)
    assert frames[0] == b"kernel_core.k.status"
    assert frames[1] == DELIMITER
    assert deserialize_iopub(frames, AUTH) == msg


@pytest.mark.parametrize("offset", [2, 3, 4, 5])
def test_tampered_segment_fails_verification(offset) -> None:
    frames = serialize(_msg(), AUTH)
    idx = frames.index(DELIMITER) + offset
    seg = bytearray(frames[idx])
    seg[1] ^= 0x01
    frames[idx] = bytes(seg)
    with pytest.raises(SignatureError):
        deserialize(frames, AUTH)


def test_wrong_key_fails_verification() -> None:
    frames = serialize(_msg(), make_authentication("hmac-sha256", "other"))
    with pytest.raises(SignatureError):
        deserialize(frames, AUTH)


def test_missing_delimiter_is_a_framing_error() -> None:
    frames = [f for f in serialize(_msg(), AUTH) if f != DELIMITER]
    with pytest.raises(DelimiterError) as exc:
        deserialize(frames, AUTH)
    assert not isinstance(exc.value, SignatureError)


def test_malformed_payloads() -> None:
    noauth = make_authentication("none")
    with pytest.raises(PayloadError):
        deserialize([b"id", DELIMITER, b"", b"{}", b"{}"], noauth)
    with pytest.raises(PayloadError):
        deserialize([DELIMITER, b"", b"{not json", b"{}", b"{}", b"{}"], noauth)
    with pytest.raises(PayloadError):
        deserialize([DELIMITER, b"", b"[1, 2]", b"{}", b"{}", b"{}"], noauth)
    assert issubclass(PayloadError, WireError) and issubclass(DelimiterError, WireError)


def test_jupyter_client_session_interop() -> None:
    session = Session(key=b"secret", signature_scheme="hmac-sha256", username="client")
    sent = session.msg("execute_request", {"code": "1+1", "silent": False})
    msg = deserialize(session.serialize(sent, ident=[b"client-id"]), AUTH)
    assert msg.identities == [b"client-id"]
    assert msg.msg_type == "execute_request"
    assert msg.msg_id == sent["header"]["msg_id"]
    assert msg.content == {"code": "1+1", "silent": False}

    reply = Message(identities=[b"client-id"], header=make_header("execute_reply", "k", "s"),
        parent_header=msg.header, content={"status": "ok", "execution_count": 1})
    idents, rest = session.feed_identities(serialize(reply, AUTH))
    decoded = session.deserialize(rest)
    assert idents == [b"client-id"]
    assert decoded["msg_type"] == "execute_reply"
    assert decoded["content"] == {"status": "ok", "execution_count": 1}
    assert decoded["parent_header"]["msg_id"] == sent["header"]["msg_id"]
