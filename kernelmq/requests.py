"Typed views of request content, parsed once at the dispatch boundary."
from dataclasses import dataclass, field, fields


class MissingFieldError(ValueError):
    def __init__(self, msg_type:str, missing:list[str]):
        self.msg_type, self.missing = msg_type, missing
        super().__init__(f"missing required fields: {', '.join(missing)}")


class Request:
    "Known fields become attributes; anything else lands in `extra`."
    @classmethod
    def from_content(cls, content:dict):
        names = {f.name for f in fields(cls)} - {"extra"}
        known = {k: v for k, v in content.items() if k in names}
        return cls(**known, extra={k: v for k, v in content.items() if k not in names})


@dataclass
class ExecuteRequest(Request):
    code:str
    silent:bool = False
    store_history:bool = True
    user_expressions:dict = field(default_factory=dict)
    allow_stdin:bool = True
    stop_on_error:bool = False
    extra:dict = field(default_factory=dict)

    def __post_init__(self):
        self.silent = bool(self.silent)
        self.store_history = bool(self.store_history) and not self.silent
        self.user_expressions = self.user_expressions or {}


@dataclass
class CompleteRequest(Request):
    code:str
    cursor_pos:int
    extra:dict = field(default_factory=dict)


@dataclass
class InspectRequest(Request):
    code:str
    cursor_pos:int
    detail_level:int = 0
    extra:dict = field(default_factory=dict)


@dataclass
class IsCompleteRequest(Request):
    code:str
    extra:dict = field(default_factory=dict)


@dataclass
class HistoryRequest(Request):
    hist_access_type:str
    output:bool = False
    raw:bool = True
    session:int = 0
    start:int = 1
    stop:int = 10
    n:int = 10
    pattern:str = "*"
    unique:bool = False
    extra:dict = field(default_factory=dict)

    def __post_init__(self):
        if self.n is None: self.n = 10
        if self.stop is None: self.stop = 10
        if self.pattern is None: self.pattern = "*"


@dataclass
class CommOpen(Request):
    comm_id:str
    target_name:str
    data:dict = field(default_factory=dict)
    extra:dict = field(default_factory=dict)


@dataclass
class CommMsg(Request):
    comm_id:str
    data:dict = field(default_factory=dict)
    extra:dict = field(default_factory=dict)


@dataclass
class CommClose(CommMsg): pass


@dataclass
class ShutdownRequest(Request):
    restart:bool = False
    extra:dict = field(default_factory=dict)


request_types = dict(execute_request=ExecuteRequest, complete_request=CompleteRequest, inspect_request=InspectRequest,
    is_complete_request=IsCompleteRequest, history_request=HistoryRequest, comm_open=CommOpen, comm_msg=CommMsg,
    comm_close=CommClose, shutdown_request=ShutdownRequest)
required = dict(execute_request=("code",), complete_request=("code", "cursor_pos"),
    inspect_request=("code", "cursor_pos"), history_request=("hist_access_type",), is_complete_request=("code",),
    comm_open=("comm_id", "target_name"), comm_msg=("comm_id",), comm_close=("comm_id",))


def missing_fields(msg_type:str, content:dict)->list[str]:
    return [key for key in required.get(msg_type, ()) if key not in content]


def parse_request(msg_type:str, content:dict):
    "Typed request for `msg_type`, or `content` itself for types without one."
    if (missing := missing_fields(msg_type, content)): raise MissingFieldError(msg_type, missing)
    cls = request_types.get(msg_type)
    return content if cls is None else cls.from_content(content)
