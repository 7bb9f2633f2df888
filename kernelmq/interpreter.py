"Interpreter interface the dispatch engine drives, plus reply builders."
import threading
from abc import ABC, abstractmethod

from .message import PROTOCOL_VERSION


def create_error_reply(ename:str="", evalue:str="", traceback:list|None=None)->dict:
    return dict(status="error", ename=ename, evalue=evalue, traceback=traceback or [])


def create_successful_reply(payload:list|None=None, user_expressions:dict|None=None)->dict:
    return dict(status="ok", payload=payload or [], user_expressions=user_expressions or {})


def create_complete_reply(matches:list, cursor_start:int, cursor_end:int, metadata:dict|None=None)->dict:
    return dict(status="ok", matches=matches, cursor_start=cursor_start, cursor_end=cursor_end, metadata=metadata or {})


def create_inspect_reply(found:bool=False, data:dict|None=None, metadata:dict|None=None)->dict:
    return dict(status="ok", found=found, data=data or {}, metadata=metadata or {})


def create_is_complete_reply(status:str="unknown", indent:str="")->dict:
    reply = dict(status=status)
    if status == "incomplete": reply["indent"] = indent
    return reply


def create_info_reply(protocol_version:str=PROTOCOL_VERSION, implementation:str="", implementation_version:str="",
    language_name:str="", language_version:str="", language_mimetype:str="", language_file_extension:str="",
    pygments_lexer:str="", language_codemirror_mode="", language_nbconvert_exporter:str="", banner:str="",
    debugger:bool=False, help_links:list|None=None)->dict:
    "`kernel_info_reply` content, minus the status."
    language_info = dict(name=language_name, version=language_version, mimetype=language_mimetype,
        file_extension=language_file_extension, pygments_lexer=pygments_lexer, codemirror_mode=language_codemirror_mode,
        nbconvert_exporter=language_nbconvert_exporter)
    return dict(protocol_version=protocol_version, implementation=implementation,
        implementation_version=implementation_version, language_info=language_info, banner=banner, debugger=debugger,
        help_links=help_links or [], supported_features=["debugger"] if debugger else [])


class Interpreter(ABC):
    def __init__(self):
        self.execution_count = 0
        self.publisher = self.stdin_sender = self.parent_header_getter = None
        self.comm_manager = self.control_messenger = self.history_manager = None
        self.input_handler = None

    def configure(self): self.configure_impl()
    def configure_impl(self): pass

    def execute_request(self, code:str, silent:bool, store_history:bool, user_expressions:dict, allow_stdin:bool)->dict:
        "Run `code`; non-silent runs bump the execution count and announce the input first."
        if not silent:
            self.execution_count += 1
            self.publish_execution_input(code, self.execution_count)
        reply = self.execute_request_impl(self.execution_count, code, silent, store_history, user_expressions,
            allow_stdin)
        reply["execution_count"] = self.execution_count
        return reply

    def complete_request(self, code:str, cursor_pos:int)->dict: return self.complete_request_impl(code, cursor_pos)

    def inspect_request(self, code:str, cursor_pos:int, detail_level:int)->dict:
        return self.inspect_request_impl(code, cursor_pos, detail_level)

    def is_complete_request(self, code:str)->dict: return self.is_complete_request_impl(code)
    def kernel_info_request(self)->dict: return self.kernel_info_request_impl()
    def shutdown_request(self): self.shutdown_request_impl()

    def internal_request(self, request:dict)->dict:
        "Same-process request arriving through the control messenger."
        return self.internal_request_impl(request)

    def internal_request_impl(self, request:dict)->dict: return dict(status="error", what="internal request not supported")

    @abstractmethod
    def execute_request_impl(self, execution_count:int, code:str, silent:bool, store_history:bool,
        user_expressions:dict, allow_stdin:bool)->dict: ...
    @abstractmethod
    def complete_request_impl(self, code:str, cursor_pos:int)->dict: ...
    @abstractmethod
    def inspect_request_impl(self, code:str, cursor_pos:int, detail_level:int)->dict: ...
    @abstractmethod
    def is_complete_request_impl(self, code:str)->dict: ...
    @abstractmethod
    def kernel_info_request_impl(self)->dict: ...
    @abstractmethod
    def shutdown_request_impl(self): ...

    def register_publisher(self, fn): self.publisher = fn
    def register_stdin_sender(self, fn): self.stdin_sender = fn
    def register_comm_manager(self, manager): self.comm_manager = manager
    def register_parent_header(self, fn): self.parent_header_getter = fn
    def register_control_messenger(self, messenger): self.control_messenger = messenger
    def register_history_manager(self, manager): self.history_manager = manager
    def register_input_handler(self, fn): self.input_handler = fn

    @property
    def parent_header(self)->dict: return self.parent_header_getter() if self.parent_header_getter else {}

    def publish_message(self, msg_type:str, metadata:dict, content:dict, buffers:list|None=None):
        if self.publisher is not None: self.publisher(msg_type, metadata, content, buffers or [])

    def publish_stream(self, name:str, text:str): self.publish_message("stream", {}, dict(name=name, text=text))

    def display_data(self, data:dict, metadata:dict|None=None, transient:dict|None=None):
        self.publish_message("display_data", {}, dict(data=data, metadata=metadata or {}, transient=transient or {}))

    def update_display_data(self, data:dict, metadata:dict|None=None, transient:dict|None=None):
        self.publish_message("update_display_data", {},
            dict(data=data, metadata=metadata or {}, transient=transient or {}))

    def publish_execution_input(self, code:str, execution_count:int):
        self.publish_message("execute_input", {}, dict(code=code, execution_count=execution_count))

    def publish_execution_result(self, execution_count:int, data:dict, metadata:dict|None=None):
        self.publish_message("execute_result", {},
            dict(execution_count=execution_count, data=data, metadata=metadata or {}))

    def publish_execution_error(self, ename:str, evalue:str, traceback:list):
        self.publish_message("error", {}, dict(ename=ename, evalue=evalue, traceback=traceback))

    def clear_output(self, wait:bool=False): self.publish_message("clear_output", {}, dict(wait=wait))

    def input_request(self, prompt:str, password:bool=False):
        "Ask the front end for input; returns once the reply has been delivered to `input_reply`."
        if self.stdin_sender is None: raise RuntimeError("no stdin channel registered")
        self.stdin_sender("input_request", {}, dict(prompt=prompt, password=password))

    def input_reply(self, value:str):
        if self.input_handler is not None: self.input_handler(value)


_interpreter = None
_interpreter_lock = threading.Lock()


def register_interpreter(interpreter: Interpreter):
    global _interpreter
    with _interpreter_lock: _interpreter = interpreter


def get_interpreter()->Interpreter:
    with _interpreter_lock:
        if _interpreter is None: raise RuntimeError("no interpreter registered")
        return _interpreter


def blocking_input_request(prompt:str, password:bool=False)->str:
    "Read a line from the front end through the registered interpreter's stdin channel."
    interpreter = get_interpreter()
    value = []
    interpreter.register_input_handler(value.append)
    try: interpreter.input_request(prompt, password)
    finally: interpreter.register_input_handler(None)
    return value[-1] if value else ""
