"Wire-traffic loggers: what came in, what went out, what was published."
import json, logging, os, threading
from enum import Enum

from jupyter_client.jsonutil import json_default

from .message import Channel, Message, PubMessage

log = logging.getLogger("kernelmq.wire")


class Level(str, Enum):
    MSG_TYPE = "msg_type"
    CONTENT = "content"
    FULL = "full"


def _ident(msg: Message)->str:
    if not msg.identities: return ""
    try: return bytes(msg.identities[0]).decode("utf-8")
    except UnicodeDecodeError: return "invalid UTF8"


class Logger:
    "Base logger; logs nothing itself but forwards to `next_logger`."

    def __init__(self, level: Level=Level.FULL, next_logger: "Logger|None"=None):
        self.level, self.next_logger = Level(level), next_logger

    def log_received_message(self, msg: Message, channel: Channel):
        self.log_message(f"received message on {Channel(channel).value} - {_ident(msg)}", msg)

    def log_sent_message(self, msg: Message, channel: Channel):
        self.log_message(f"sent message on {Channel(channel).value} - {_ident(msg)}", msg)

    def log_iopub_message(self, msg: PubMessage): self.log_message(f"sent message on iopub - {msg.topic}", msg)

    def log_message(self, info:str, msg):
        doc = dict(msg_type=msg.header.get("msg_type", ""))
        if self.level == Level.CONTENT: doc["content"] = msg.content
        elif self.level == Level.FULL:
            doc |= dict(header=msg.header, parent_header=msg.parent_header, metadata=msg.metadata, content=msg.content)
        self.write(info, doc)
        if self.next_logger is not None: self.next_logger.log_message(info, msg)

    def write(self, info:str, doc:dict): pass


class NullLogger(Logger):
    def log_message(self, info:str, msg): pass


class ConsoleLogger(Logger):
    def write(self, info:str, doc:dict): log.info("%s\n%s", info, json.dumps(doc, indent=4, default=json_default))


class FileLogger(Logger):
    def __init__(self, path:str, level: Level=Level.FULL, next_logger: Logger|None=None):
        "Append one JSON document per message to `path`."
        super().__init__(level, next_logger)
        self.path = path
        self.lock = threading.Lock()

    def write(self, info:str, doc:dict):
        text = json.dumps(dict(info=info, message=doc), indent=4, default=json_default)
        with self.lock, open(self.path, "a", encoding="utf-8") as f: f.write(text + "\n")


def make_logger()->Logger:
    """Logger chosen from the environment.

    `KERNELMQ_LOG` names a level (`msg_type`, `content`, `full`) and turns console logging on;
    `KERNELMQ_LOG_FILE` adds a file logger at the same level."""
    level = (os.environ.get("KERNELMQ_LOG") or "").strip().lower()
    path = os.environ.get("KERNELMQ_LOG_FILE")
    if not level and not path: return NullLogger()
    if level not in Level._value2member_map_: level = Level.FULL
    file_logger = FileLogger(path, level) if path else None
    if not os.environ.get("KERNELMQ_LOG"): return file_logger
    return ConsoleLogger(level, file_logger)
