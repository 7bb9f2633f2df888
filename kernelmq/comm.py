"Comms: named targets and ad-hoc bidirectional sessions over shell/iopub."
import logging, threading, weakref

from fastcore.basics import store_attr

from .message import Channel, Message, new_guid

log = logging.getLogger("kernelmq.comm")


class CommError(LookupError): pass


class Target:
    def __init__(self, name:str, callback, manager: "CommManager"):
        "Named factory; `callback(comm, request)` runs when a client opens a comm against `name`."
        store_attr()

    def __call__(self, comm: "Comm", request: Message): self.callback(comm, request)

    def publish_message(self, msg_type:str, metadata:dict, content:dict, buffers:list):
        self.manager.publish_message(msg_type, metadata, content, buffers)


class Comm:
    """One end of a comm session.

    The manager only keeps a weak reference: the comm stays registered for as long as its creator holds it,
    or until it is closed."""

    def __init__(self, target: Target, comm_id:str|None=None):
        self.target = target
        self.comm_id = comm_id or new_guid()
        self.message_handler = self.close_handler = None
        self.manager.register_comm(self.comm_id, self)

    @property
    def manager(self)->"CommManager": return self.target.manager

    def __repr__(self): return f"Comm({self.target.name!r}, {self.comm_id!r})"

    def _publish(self, msg_type:str, metadata, data, buffers, **extra):
        content = dict(comm_id=self.comm_id, **extra, data=data or {})
        self.target.publish_message(msg_type, metadata or {}, content, list(buffers or []))

    def open(self, data:dict|None=None, metadata:dict|None=None, buffers:list|None=None):
        self._publish("comm_open", metadata, data, buffers, target_name=self.target.name)

    def send(self, data:dict|None=None, metadata:dict|None=None, buffers:list|None=None):
        self._publish("comm_msg", metadata, data, buffers)

    def close(self, data:dict|None=None, metadata:dict|None=None, buffers:list|None=None):
        self._publish("comm_close", metadata, data, buffers)
        self.manager.unregister_comm(self.comm_id, self)

    def on_message(self, handler): self.message_handler = handler
    def on_close(self, handler): self.close_handler = handler

    def handle_message(self, request: Message):
        if self.message_handler is not None: self.message_handler(request)

    def handle_close(self, request: Message):
        if self.close_handler is not None: self.close_handler(request)

    def rebind(self, comm_id:str):
        "Move this comm to a new id."
        self.manager.unregister_comm(self.comm_id, self)
        self.comm_id = comm_id
        self.manager.register_comm(comm_id, self)


class CommManager:
    def __init__(self, kernel=None):
        "Target and comm registry; `kernel` provides `publish_message`."
        self.kernel = kernel
        self.targets = {}
        self._comms = weakref.WeakValueDictionary()
        self.lock = threading.Lock()

    def register_comm_target(self, name:str, callback)->Target:
        target = Target(name, callback, self)
        with self.lock: self.targets[name] = target
        return target

    def unregister_comm_target(self, name:str):
        with self.lock: self.targets.pop(name, None)

    def target(self, name:str)->Target|None:
        with self.lock: return self.targets.get(name)

    @property
    def comms(self)->dict:
        "Snapshot of the open comms by id."
        with self.lock: return dict(self._comms)

    def register_comm(self, comm_id:str, comm: Comm):
        with self.lock: self._comms[comm_id] = comm

    def unregister_comm(self, comm_id:str, comm: Comm|None=None):
        "Drop `comm_id`; with `comm` given, only while that comm still holds the id."
        with self.lock:
            if comm is None or self._comms.get(comm_id) is comm: self._comms.pop(comm_id, None)

    def _get(self, comm_id:str)->Comm:
        with self.lock: comm = self._comms.get(comm_id)
        if comm is None: raise CommError(f"No such comm registered: {comm_id}")
        return comm

    def publish_message(self, msg_type:str, metadata:dict, content:dict, buffers:list):
        if self.kernel is None: raise RuntimeError("comm manager is not attached to a kernel")
        self.kernel.publish_message(msg_type, metadata, content, buffers, Channel.SHELL)

    def comm_open(self, request: Message):
        "Open a comm for a registered target; unknown targets are closed straight away."
        content = request.content
        target = self.target(content.get("target_name", ""))
        if target is None:
            log.info("comm_open for unknown target %r; closing", content.get("target_name"))
            self.publish_message("comm_close", {}, content, [])
            return
        comm = Comm(target, content["comm_id"])
        target(comm, request)

    def comm_msg(self, request: Message): self._get(request.content.get("comm_id", "")).handle_message(request)

    def comm_close(self, request: Message):
        comm_id = request.content.get("comm_id", "")
        try: self._get(comm_id).handle_close(request)
        finally: self.unregister_comm(comm_id)
