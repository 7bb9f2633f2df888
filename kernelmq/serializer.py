"Wire codec: messages to signed multi-frame buffers and back."
import json

from jupyter_client.jsonutil import json_default

from .auth import Authentication
from .message import Message, PubMessage

DELIMITER = b"<IDS|MSG>"


class WireError(ValueError): pass
class DelimiterError(WireError): "No `<IDS|MSG>` frame in the buffer."
class SignatureError(WireError): "Signature does not match the payload."
class PayloadError(WireError): "Too few frames, or a segment that is not a JSON object."


def pack(obj)->bytes:
    return json.dumps(obj, default=json_default, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def unpack(data)->dict:
    try: obj = json.loads(bytes(data))
    except ValueError as err: raise PayloadError(f"invalid JSON segment: {err}") from err
    if not isinstance(obj, dict): raise PayloadError(f"expected a JSON object, got {type(obj).__name__}")
    return obj


def split_identities(frames:list)->tuple[list, list]:
    "Split `frames` at the delimiter into (routing frames, payload frames)."
    frames = [f.bytes if hasattr(f, "bytes") else bytes(f) for f in frames]
    try: idx = frames.index(DELIMITER)
    except ValueError: raise DelimiterError("missing message delimiter") from None
    return frames[:idx], frames[idx + 1:]


def _payload_frames(msg, auth: Authentication)->list[bytes]:
    segs = [pack(msg.header), pack(msg.parent_header), pack(msg.metadata), pack(msg.content)]
    sig = auth.sign(*segs).encode("ascii")
    return [DELIMITER, sig, *segs, *[bytes(b) for b in msg.buffers]]


def _decode_payload(payload:list, auth: Authentication)->dict:
    if len(payload) < 5: raise PayloadError(f"expected at least 5 frames after delimiter, got {len(payload)}")
    sig, segs, buffers = payload[0], payload[1:5], payload[5:]
    if not auth.verify(sig, *segs): raise SignatureError("invalid message signature")
    header, parent_header, metadata, content = (unpack(s) for s in segs)
    return dict(header=header, parent_header=parent_header, metadata=metadata, content=content, buffers=list(buffers))


def serialize(msg: Message, auth: Authentication)->list[bytes]:
    return [bytes(i) for i in msg.identities] + _payload_frames(msg, auth)


def deserialize(frames:list, auth: Authentication)->Message:
    "Decode an addressed message; raises a `WireError` subclass on bad input."
    identities, payload = split_identities(frames)
    return Message(identities=identities, **_decode_payload(payload, auth))


def serialize_iopub(msg: PubMessage, auth: Authentication)->list[bytes]:
    return [msg.topic.encode("utf-8")] + _payload_frames(msg, auth)


def deserialize_iopub(frames:list, auth: Authentication)->PubMessage:
    topics, payload = split_identities(frames)
    topic = topics[0].decode("utf-8", errors="replace") if topics else ""
    return PubMessage(topic=topic, **_decode_payload(payload, auth))
