"Channel workers: one socket set per thread, stopped through inproc handshakes."
import json, logging, threading, time
from abc import ABC, abstractmethod

import zmq

from .config import Configuration, env_int
from .serializer import WireError
from . import debug as _dbg_mod

log = logging.getLogger("kernelmq.channels")
dbg = _dbg_mod.dbg
STOP = b"stop"


def socket_linger()->int: return env_int("KERNELMQ_SOCKET_LINGER", 1000)
def controller_endpoint(name:str, uid:str)->str: return f"inproc://{name}_controller-{uid}"
def publisher_endpoint(uid:str)->str: return f"inproc://publisher-{uid}"
def stop_endpoint(name:str, uid:str)->str: return f"inproc://{name}_stop-{uid}"


def socket_port(sock: zmq.Socket)->str:
    "Port (or ipc suffix) parsed from the socket's last bound endpoint."
    endpoint = sock.getsockopt_string(zmq.LAST_ENDPOINT)
    return endpoint.rsplit(":", 1)[-1] if endpoint.startswith("tcp") else endpoint.rsplit("-", 1)[-1]


def init_socket(sock: zmq.Socket, config: Configuration, port:str)->str:
    "Bind `sock` to `port`, or to a free one when `port` is empty; return the bound port."
    sock.linger = socket_linger()
    if port or config.transport != "tcp":
        sock.bind(config.addr(port))
        return socket_port(sock)
    return str(sock.bind_to_random_port(f"tcp://{config.ip}", min_port=49152, max_port=65536))


def bind_inproc(context: zmq.Context, kind:int, endpoint:str)->zmq.Socket:
    sock = context.socket(kind)
    sock.linger = socket_linger()
    sock.bind(endpoint)
    return sock


def connect_inproc(context: zmq.Context, kind:int, endpoint:str)->zmq.Socket:
    sock = context.socket(kind)
    sock.linger = socket_linger()
    sock.connect(endpoint)
    return sock


def send_stop(context: zmq.Context, endpoint:str):
    "Ask the worker behind `endpoint` to stop and wait for its acknowledgement."
    sock = connect_inproc(context, zmq.REQ, endpoint)
    try:
        sock.send(STOP)
        sock.recv()
    finally: sock.close()


def wake(context: zmq.Context, endpoint:str):
    "Fire-and-forget stop signal; safe to call from any thread."
    sock = connect_inproc(context, zmq.PUSH, endpoint)
    try: sock.send(STOP)
    finally: sock.close()


def close_all(*socks):
    for sock in socks:
        if sock is not None and not sock.closed: sock.close()


class HeartbeatThread(threading.Thread):
    def __init__(self, context: zmq.Context, config: Configuration, uid:str):
        "Loop-back liveness echo on the hb port."
        super().__init__(daemon=True, name="heartbeat-thread")
        self.socket = context.socket(zmq.ROUTER)
        self.port = init_socket(self.socket, config, config.hb_port)
        self.controller = bind_inproc(context, zmq.REP, controller_endpoint("heartbeat", uid))

    def run(self):
        "Echo every frame-set verbatim until the controller says stop."
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.controller, zmq.POLLIN)
        try:
            while True:
                events = dict(poller.poll())
                if self.controller in events:
                    self.controller.recv()
                    self.controller.send(STOP)
                    break
                if self.socket in events:
                    try: self.socket.send_multipart(self.socket.recv_multipart())
                    except zmq.ZMQError as err: log.error("heartbeat echo failed: %s", err)
        finally: close_all(self.socket, self.controller)


class PublisherThread(threading.Thread):
    def __init__(self, context: zmq.Context, config: Configuration, uid:str):
        "Relay from the inproc publisher endpoint to the iopub PUB socket."
        super().__init__(daemon=True, name="iopub-thread")
        self.socket = context.socket(zmq.PUB)
        self.port = init_socket(self.socket, config, config.iopub_port)
        self.inbound = bind_inproc(context, zmq.PULL, publisher_endpoint(uid))
        self.controller = bind_inproc(context, zmq.REP, controller_endpoint("publisher", uid))
        self.sent = 0

    def _relay(self, flags:int=0)->bool:
        try: frames = self.inbound.recv_multipart(flags)
        except zmq.Again: return False
        try:
            self.socket.send_multipart(frames)
            self.sent += 1
        except zmq.ZMQError as err: log.error("iopub send failed: %s", err)
        return True

    def run(self):
        poller = zmq.Poller()
        poller.register(self.inbound, zmq.POLLIN)
        poller.register(self.controller, zmq.POLLIN)
        try:
            while True:
                events = dict(poller.poll())
                if self.inbound in events: self._relay()
                if self.controller in events:
                    while self._relay(zmq.NOBLOCK): pass
                    self.controller.recv()
                    self.controller.send(STOP)
                    break
        finally:
            dbg(f"publisher exiting sent={self.sent}")
            close_all(self.socket, self.inbound, self.controller)


class ControlMessenger(ABC):
    "Synchronous control -> shell round trip that bypasses the public sockets."
    def send_to_shell(self, request:dict)->dict: return self.send_to_shell_impl(request)

    @abstractmethod
    def send_to_shell_impl(self, request:dict)->dict: ...


class TrivialMessenger(ControlMessenger):
    def __init__(self, server): self.server = server
    def send_to_shell_impl(self, request:dict)->dict: return self.server.notify_internal_listener(request)


class ZMQMessenger(ControlMessenger):
    def __init__(self, context: zmq.Context, uid:str):
        "REQ sockets onto the shell, publisher and heartbeat controllers."
        self.shell = connect_inproc(context, zmq.REQ, controller_endpoint("shell", uid))
        self.publisher = connect_inproc(context, zmq.REQ, controller_endpoint("publisher", uid))
        self.heartbeat = connect_inproc(context, zmq.REQ, controller_endpoint("heartbeat", uid))

    def send_to_shell_impl(self, request:dict)->dict:
        self.shell.send_string(json.dumps(request))
        return json.loads(self.shell.recv_string())

    def stop_channels(self):
        "Stop shell, then publisher, then heartbeat; each acknowledges before the next."
        for sock in (self.shell, self.publisher, self.heartbeat):
            sock.send(STOP)
            sock.recv()
        close_all(self.shell, self.publisher, self.heartbeat)


def internal_reply(server, raw:bytes)->bytes:
    try: reply = server.notify_internal_listener(json.loads(raw))
    except Exception as exc:
        log.warning("internal request failed", exc_info=exc)
        reply = dict(status="error", what=str(exc))
    return json.dumps(reply).encode("utf-8")


def recv_message(server, sock: zmq.Socket, label:str):
    "Receive and decode one message from `sock`; `None` if it was dropped."
    try: return server.deserialize(sock.recv_multipart())
    except WireError as err: log.warning("dropping %s message: %s", label, err)
    except zmq.ZMQError as err: log.error("%s receive failed: %s", label, err)
    return None


def guarded(label:str, fn, *args):
    "Run a listener; a failure is logged and the loop goes on."
    try: fn(*args)
    except Exception as exc: log.error("%s listener failed", label, exc_info=exc)


def stdin_round_trip(server, sock: zmq.Socket, frames:list):
    "Send an input request and block until a valid reply arrives."
    sock.send_multipart(frames)
    while (msg := recv_message(server, sock, "stdin")) is None: pass
    server.notify_stdin_listener(msg)


def abort_queue(server, sock: zmq.Socket, listener, interval:int):
    "Feed already-queued requests to `listener` without blocking, `interval` ms apart."
    while True:
        try: frames = sock.recv_multipart(zmq.NOBLOCK)
        except zmq.Again: return
        try: guarded("abort", listener, server.deserialize(frames))
        except WireError as err: log.warning("dropping queued message: %s", err)
        time.sleep(interval / 1000)


class ShellChannel:
    def __init__(self, context: zmq.Context, config: Configuration, server, uid:str):
        "Shell and stdin ROUTERs, a publisher feed, and the internal controller."
        self.server = server
        self.shell = context.socket(zmq.ROUTER)
        self.stdin = context.socket(zmq.ROUTER)
        self.shell_port = init_socket(self.shell, config, config.shell_port)
        self.stdin_port = init_socket(self.stdin, config, config.stdin_port)
        self.publisher = connect_inproc(context, zmq.PUSH, publisher_endpoint(uid))
        self.controller = bind_inproc(context, zmq.REP, controller_endpoint("shell", uid))

    def run(self):
        poller = zmq.Poller()
        poller.register(self.shell, zmq.POLLIN)
        poller.register(self.controller, zmq.POLLIN)
        try:
            while True:
                events = dict(poller.poll())
                if self.controller in events:
                    raw = self.controller.recv()
                    if raw == STOP:
                        self.controller.send(STOP)
                        break
                    self.controller.send(internal_reply(self.server, raw))
                if self.shell in events:
                    msg = recv_message(self.server, self.shell, "shell")
                    if msg is not None: guarded("shell", self.server.notify_shell_listener, msg)
        finally: close_all(self.shell, self.stdin, self.publisher, self.controller)

    def send_shell(self, frames:list): self.shell.send_multipart(frames)

    def send_stdin(self, frames:list): stdin_round_trip(self.server, self.stdin, frames)
    def publish(self, frames:list): self.publisher.send_multipart(frames)
    def abort_queue(self, listener, interval:int): abort_queue(self.server, self.shell, listener, interval)


class ControlChannel:
    def __init__(self, context: zmq.Context, config: Configuration, server, uid:str):
        self.context, self.server = context, server
        self.control = context.socket(zmq.ROUTER)
        self.port = init_socket(self.control, config, config.control_port)
        self.publisher = connect_inproc(context, zmq.PUSH, publisher_endpoint(uid))
        self.stop_addr = stop_endpoint("control", uid)
        self.stopper = bind_inproc(context, zmq.PULL, self.stop_addr)
        self.messenger = ZMQMessenger(context, uid)
        self.request_stop = False

    def run(self):
        "Serve control requests until `stop`, then stop the other channels."
        poller = zmq.Poller()
        poller.register(self.control, zmq.POLLIN)
        poller.register(self.stopper, zmq.POLLIN)
        try:
            while not self.request_stop:
                events = dict(poller.poll())
                if self.stopper in events: self.stopper.recv()
                if self.control in events and not self.request_stop:
                    msg = recv_message(self.server, self.control, "control")
                    if msg is not None: guarded("control", self.server.notify_control_listener, msg)
            self.messenger.stop_channels()
        finally:
            close_all(self.control, self.publisher, self.stopper)
            self.server.notify_control_stopped()

    def stop(self):
        self.request_stop = True
        wake(self.context, self.stop_addr)

    def send_control(self, frames:list): self.control.send_multipart(frames)
    def publish(self, frames:list): self.publisher.send_multipart(frames)
