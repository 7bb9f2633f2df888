"Dispatch engine: requests in, policy calls out, replies and events back on the right channel."
import ctypes, logging, os, signal, threading, traceback

from fastcore.basics import store_attr

from .comm import CommManager
from .config import env_int
from .debugger import failed_response
from .interpreter import create_error_reply
from .message import Channel, Message, PubMessage, iso8601_now, make_header
from .requests import MissingFieldError, parse_request
from . import debug as _dbg_mod

log = logging.getLogger("kernelmq.core")
dbg = _dbg_mod.dbg


def reply_type(msg_type:str)->str:
    if msg_type.endswith("_request"): return msg_type[:-len("_request")] + "_reply"
    return msg_type + "_reply"


def send_interrupt_signal():
    "Send SIGINT to the current process or process group."
    if os.name == "nt":
        log.warning("Interrupt request not supported on Windows")
        return
    pid = os.getpid()
    try: pgid = os.getpgid(pid)
    except OSError: pgid = None
    try:
        # only signal the group when we lead it
        if pgid and pgid == pid and hasattr(os, "killpg"): os.killpg(pgid, signal.SIGINT)
        else: os.kill(pid, signal.SIGINT)
    except OSError as err: log.warning("Interrupt signal failed: %s", err)


def raise_async_exception(thread_id:int, exc_type: type[BaseException])->bool:
    "Inject `exc_type` into a thread by id; returns success."
    res = ctypes.pythonapi.PyThreadState_SetAsyncExc(ctypes.c_ulong(thread_id), ctypes.py_object(exc_type))
    if res == 0: return False
    if res > 1:
        ctypes.pythonapi.PyThreadState_SetAsyncExc(ctypes.c_ulong(thread_id), None)
        return False
    return True


class KernelCore:
    def __init__(self, kernel_id:str, user_name:str, session_id:str, logger, server, interpreter, history_manager,
        debugger=None):
        "Wire the dispatch table between `server` and the interpreter/history/debugger collaborators."
        store_attr()
        self.comm_manager = CommManager(self)
        self.parent_ids = {Channel.SHELL: [], Channel.CONTROL: []}
        self.parent_headers = {Channel.SHELL: {}, Channel.CONTROL: {}}
        self.executing = threading.Event()
        self.executing_thread = None
        self.interrupt_lock = threading.RLock()
        self.pending_abort = False
        self.abort_interval = env_int("KERNELMQ_ABORT_POLL", 50)
        self.handlers = dict(execute_request=self.execute_request, complete_request=self.complete_request,
            inspect_request=self.inspect_request, history_request=self.history_request,
            is_complete_request=self.is_complete_request, comm_info_request=self.comm_info_request,
            comm_open=self.comm_open, comm_close=self.comm_close, comm_msg=self.comm_msg,
            kernel_info_request=self.kernel_info_request, shutdown_request=self.shutdown_request,
            interrupt_request=self.interrupt_request, debug_request=self.debug_request)
        server.register_shell_listener(self.dispatch_shell)
        server.register_control_listener(self.dispatch_control)
        server.register_stdin_listener(self.dispatch_stdin)
        server.register_internal_listener(self.dispatch_internal)
        interpreter.register_publisher(self.publish_from_interpreter)
        interpreter.register_stdin_sender(self.send_stdin)
        interpreter.register_comm_manager(self.comm_manager)
        interpreter.register_parent_header(lambda: self.parent_header(Channel.SHELL))

    def dispatch_shell(self, msg: Message): self.dispatch(msg, Channel.SHELL)
    def dispatch_control(self, msg: Message): self.dispatch(msg, Channel.CONTROL)

    def dispatch(self, msg: Message, channel: Channel):
        "Handle one request: record its parent, busy, handler, idle, reply."
        self.logger.log_received_message(msg, channel)
        _dbg_mod.tlog(log, f"{channel.value} recv", msg.header)
        msg_type = msg.msg_type
        self.set_parent(msg.identities, msg.header, channel)
        self.publish_status("busy", channel)
        handler = self.handlers.get(msg_type)
        if handler is None:
            log.warning("Unknown message type %r on %s; aborting", msg_type, channel.value)
            result = reply_type(msg_type), dict(status="aborted", msg_type=msg_type)
        else:
            try: result = handler(parse_request(msg_type, msg.content), msg, channel)
            except (Exception, KeyboardInterrupt) as exc: result = self._error_reply(msg, channel, exc)
        self.publish_status("idle", channel)
        if result is not None: self.send_reply(*result, channel)
        if self.pending_abort:
            self.pending_abort = False
            self.server.abort_queue(self.abort_request, self.abort_interval)

    def _error_reply(self, msg: Message, channel: Channel, exc: BaseException)->tuple[str, dict]:
        msg_type = msg.msg_type
        if isinstance(exc, MissingFieldError): ename, tb = "MissingField", []
        else:
            log.warning("Internal error in %s handler", msg_type, exc_info=exc)
            ename, tb = type(exc).__name__, traceback.format_exception(type(exc), exc, exc.__traceback__)
        reply = create_error_reply(ename, str(exc), tb)
        if msg_type == "execute_request":
            reply |= dict(execution_count=self.interpreter.execution_count, user_expressions={}, payload=[])
            self.publish_message("error", {}, dict(ename=ename, evalue=str(exc), traceback=tb), [], channel)
        return reply_type(msg_type), reply

    def abort_request(self, msg: Message):
        "Drained shell request: queued executes are answered as aborted, anything else runs normally."
        if msg.msg_type != "execute_request": return self.dispatch(msg, Channel.SHELL)
        self.logger.log_received_message(msg, Channel.SHELL)
        dbg(f"ABORTING id={msg.msg_id[:8]}")
        self.set_parent(msg.identities, msg.header, Channel.SHELL)
        self.publish_status("busy", Channel.SHELL)
        self.publish_status("idle", Channel.SHELL)
        content = dict(status="aborted", execution_count=self.interpreter.execution_count, user_expressions={},
            payload=[])
        self.send_reply("execute_reply", content, Channel.SHELL)

    def interrupt(self)->bool:
        """Raise `KeyboardInterrupt` in the thread running the current cell; `False` when idle.

        Signals are handled on the main thread, which only runs cells for the `zmq` and `shell-main` servers.
        Any other executing thread gets the exception injected, and it lands once that thread runs Python code again."""
        with self.interrupt_lock:
            thread_id = self.executing_thread
            if not self.executing.is_set() or thread_id is None: return False
            if thread_id == threading.get_ident(): raise KeyboardInterrupt
            return raise_async_exception(thread_id, KeyboardInterrupt)

    def dispatch_stdin(self, msg: Message):
        self.logger.log_received_message(msg, Channel.STDIN)
        if msg.msg_type == "input_reply": self.interpreter.input_reply(msg.content.get("value", ""))

    def dispatch_internal(self, request:dict)->dict: return self.interpreter.internal_request(request)

    def set_parent(self, identities:list, header:dict, channel: Channel):
        self.parent_ids[channel], self.parent_headers[channel] = identities, header

    def parent_header(self, channel: Channel)->dict: return self.parent_headers[channel]
    def get_metadata(self)->dict: return dict(started=iso8601_now())

    def send_reply(self, msg_type:str, content:dict, channel: Channel):
        msg = Message(identities=self.parent_ids[channel], header=make_header(msg_type, self.user_name, self.session_id),
            parent_header=self.parent_headers[channel], metadata=self.get_metadata(), content=content)
        self.logger.log_sent_message(msg, channel)
        if channel == Channel.CONTROL: self.server.send_control(msg)
        else: self.server.send_shell(msg)

    def send_stdin(self, msg_type:str, metadata:dict, content:dict):
        "Send a stdin request to the shell parent's front end; blocks until its reply is dispatched."
        msg = Message(identities=self.parent_ids[Channel.SHELL],
            header=make_header(msg_type, self.user_name, self.session_id),
            parent_header=self.parent_headers[Channel.SHELL], metadata=metadata, content=content)
        self.logger.log_sent_message(msg, Channel.STDIN)
        self.server.send_stdin(msg)

    def publish_message(self, msg_type:str, metadata:dict, content:dict, buffers:list, channel: Channel):
        msg = PubMessage(topic=f"kernel_core.{self.kernel_id}.{msg_type}",
            header=make_header(msg_type, self.user_name, self.session_id), parent_header=self.parent_headers[channel],
            metadata=metadata, content=content, buffers=list(buffers))
        self.logger.log_iopub_message(msg)
        self.server.publish(msg, channel)

    def publish_from_interpreter(self, msg_type:str, metadata:dict, content:dict, buffers:list):
        self.publish_message(msg_type, metadata, content, buffers, Channel.SHELL)

    def publish_status(self, state:str, channel: Channel):
        self.publish_message("status", {}, dict(execution_state=state), [], channel)

    def build_start_msg(self)->PubMessage:
        return PubMessage(topic=f"kernel_core.{self.kernel_id}.status",
            header=make_header("status", self.user_name, self.session_id), content=dict(execution_state="starting"))

    def execute_request(self, req, msg: Message, channel: Channel):
        dbg(f"EXEC id={msg.msg_id[:8]} code={req.code[:30]!r}")
        with self.interrupt_lock:
            self.executing_thread = threading.get_ident()
            self.executing.set()
        try: reply = self.interpreter.execute_request(req.code, req.silent, req.store_history, req.user_expressions,
            req.allow_stdin)
        finally:
            with self.interrupt_lock:
                self.executing.clear()
                self.executing_thread = None
        if req.store_history: self.history_manager.store_inputs(0, self.interpreter.execution_count, req.code)
        if reply.get("status") == "error" and req.stop_on_error: self.pending_abort = True
        return "execute_reply", reply

    def complete_request(self, req, msg: Message, channel: Channel):
        return "complete_reply", self.interpreter.complete_request(req.code, req.cursor_pos)

    def inspect_request(self, req, msg: Message, channel: Channel):
        return "inspect_reply", self.interpreter.inspect_request(req.code, req.cursor_pos, req.detail_level)

    def is_complete_request(self, req, msg: Message, channel: Channel):
        return "is_complete_reply", self.interpreter.is_complete_request(req.code)

    def history_request(self, req, msg: Message, channel: Channel):
        return "history_reply", self.history_manager.process_request(msg.content)

    def comm_info_request(self, content:dict, msg: Message, channel: Channel):
        target_name = content.get("target_name")
        comms = {comm_id: dict(target_name=comm.target.name) for comm_id, comm in self.comm_manager.comms.items()
            if target_name is None or comm.target.name == target_name}
        return "comm_info_reply", dict(status="ok", comms=comms)

    def comm_open(self, req, msg: Message, channel: Channel): self.comm_manager.comm_open(msg)
    def comm_msg(self, req, msg: Message, channel: Channel): self.comm_manager.comm_msg(msg)
    def comm_close(self, req, msg: Message, channel: Channel): self.comm_manager.comm_close(msg)

    def kernel_info_request(self, content:dict, msg: Message, channel: Channel):
        reply = dict(self.interpreter.kernel_info_request())
        reply["debugger"] = self.debugger is not None
        if reply["debugger"]: reply["supported_features"] = sorted(set(reply.get("supported_features", [])) | {"debugger"})
        reply["status"] = "ok"
        return "kernel_info_reply", reply

    def shutdown_request(self, req, msg: Message, channel: Channel):
        self.interpreter.shutdown_request()
        self.server.stop()
        reply = dict(status="ok", restart=bool(req.restart))
        self.publish_message("shutdown_reply", {}, reply, [], channel)
        return "shutdown_reply", reply

    def interrupt_request(self, content:dict, msg: Message, channel: Channel):
        send_interrupt_signal()
        return "interrupt_reply", dict(status="ok")

    def debug_request(self, content:dict, msg: Message, channel: Channel):
        if self.debugger is None: return "debug_reply", failed_response(content)
        return "debug_reply", self.debugger.process_request(msg.header, content)
