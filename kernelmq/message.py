"In-memory message model: ids, headers, addressed and broadcast messages."
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

PROTOCOL_VERSION = "5.3"


def new_guid()->str:
    "Return a fresh 32-char lowercase hex identifier."
    return uuid.uuid4().hex


def iso8601_now()->str:
    "Current UTC time as ISO-8601 with microseconds and a `Z` suffix."
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def make_header(msg_type:str, user_name:str, session_id:str)->dict:
    return dict(msg_id=new_guid(), username=user_name, session=session_id, date=iso8601_now(),
        msg_type=msg_type, version=PROTOCOL_VERSION)


class Channel(str, Enum):
    SHELL = "shell"
    CONTROL = "control"
    STDIN = "stdin"


@dataclass
class MessageBase:
    header: dict = field(default_factory=dict)
    parent_header: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    content: dict = field(default_factory=dict)
    buffers: list = field(default_factory=list)

    @property
    def msg_type(self)->str: return self.header.get("msg_type", "")

    @property
    def msg_id(self)->str: return self.header.get("msg_id", "")


@dataclass
class Message(MessageBase):
    "Addressed request/reply carrying the routing identities to echo back to."
    identities: list = field(default_factory=list)


@dataclass
class PubMessage(MessageBase):
    "Topic-addressed broadcast."
    topic: str = ""
