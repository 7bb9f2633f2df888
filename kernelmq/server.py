"Server variants composing the channel workers behind one send/publish contract."
import logging, threading
from abc import ABC, abstractmethod

import zmq

from .auth import make_authentication
from .channels import (ControlChannel, HeartbeatThread, PublisherThread, ShellChannel, TrivialMessenger, abort_queue,
    bind_inproc, close_all, connect_inproc, controller_endpoint, guarded, init_socket, publisher_endpoint,
    recv_message, send_stop, stdin_round_trip, stop_endpoint, wake)
from .config import Configuration
from .message import Channel, Message, PubMessage, new_guid
from .serializer import deserialize, serialize, serialize_iopub
from . import debug as _dbg_mod

log = logging.getLogger("kernelmq.server")
dbg = _dbg_mod.dbg


class Server(ABC):
    def __init__(self, config: Configuration):
        self.auth = make_authentication(config.signature_scheme, config.key)
        self.shell_listener = self.control_listener = self.stdin_listener = self.internal_listener = None

    def register_shell_listener(self, fn): self.shell_listener = fn
    def register_control_listener(self, fn): self.control_listener = fn
    def register_stdin_listener(self, fn): self.stdin_listener = fn
    def register_internal_listener(self, fn): self.internal_listener = fn

    def notify_shell_listener(self, msg: Message): self.shell_listener(msg)
    def notify_control_listener(self, msg: Message): self.control_listener(msg)
    def notify_stdin_listener(self, msg: Message): self.stdin_listener(msg)
    def notify_internal_listener(self, request:dict)->dict: return self.internal_listener(request)

    def deserialize(self, frames:list)->Message: return deserialize(frames, self.auth)

    def start(self, start_msg: PubMessage):
        "Publish `start_msg` and serve until `stop`; returns once every worker has stopped."
        self.start_impl(start_msg)

    def stop(self): self.stop_impl()
    def send_shell(self, msg: Message): self.send_shell_impl(serialize(msg, self.auth))
    def send_control(self, msg: Message): self.send_control_impl(serialize(msg, self.auth))

    def send_stdin(self, msg: Message):
        "Blocks until the stdin reply has been handed to the stdin listener."
        self.send_stdin_impl(serialize(msg, self.auth))

    def publish(self, msg: PubMessage, channel: Channel): self.publish_impl(serialize_iopub(msg, self.auth), channel)
    def abort_queue(self, listener, interval:int): self.abort_queue_impl(listener, interval)

    def update_config(self, config: Configuration)->Configuration:
        "Write the actually bound ports into `config`."
        self.update_config_impl(config)
        return config

    @property
    def control_messenger(self): return self.get_control_messenger_impl()

    @abstractmethod
    def start_impl(self, start_msg: PubMessage): ...
    @abstractmethod
    def stop_impl(self): ...
    @abstractmethod
    def send_shell_impl(self, frames:list): ...
    @abstractmethod
    def send_control_impl(self, frames:list): ...
    @abstractmethod
    def send_stdin_impl(self, frames:list): ...
    @abstractmethod
    def publish_impl(self, frames:list, channel: Channel): ...
    @abstractmethod
    def abort_queue_impl(self, listener, interval:int): ...
    @abstractmethod
    def update_config_impl(self, config: Configuration): ...
    @abstractmethod
    def get_control_messenger_impl(self): ...


class ZMQServer(Server):
    "Shell and control polled on the calling thread; publisher and heartbeat on their own threads."

    def __init__(self, context: zmq.Context, config: Configuration):
        super().__init__(config)
        self.context, self.uid = context, new_guid()[:12]
        self.shell, self.control, self.stdin = (context.socket(zmq.ROUTER) for _ in range(3))
        self.shell_port = init_socket(self.shell, config, config.shell_port)
        self.control_port = init_socket(self.control, config, config.control_port)
        self.stdin_port = init_socket(self.stdin, config, config.stdin_port)
        self.publisher_thread = PublisherThread(context, config, self.uid)
        self.heartbeat_thread = HeartbeatThread(context, config, self.uid)
        self.publisher = connect_inproc(context, zmq.PUSH, publisher_endpoint(self.uid))
        self.stop_addr = stop_endpoint("server", self.uid)
        self.stopper = bind_inproc(context, zmq.PULL, self.stop_addr)
        self.messenger = TrivialMessenger(self)
        self.request_stop = False

    def start_impl(self, start_msg: PubMessage):
        self.publisher_thread.start()
        self.heartbeat_thread.start()
        self.publish(start_msg, Channel.SHELL)
        poller = zmq.Poller()
        for sock in (self.control, self.shell, self.stopper): poller.register(sock, zmq.POLLIN)
        try:
            while not self.request_stop:
                events = dict(poller.poll())
                if self.stopper in events: self.stopper.recv()
                for sock, label, fn in ((self.control, "control", self.notify_control_listener),
                    (self.shell, "shell", self.notify_shell_listener)):
                    if sock not in events or self.request_stop: continue
                    msg = recv_message(self, sock, label)
                    if msg is not None: guarded(label, fn, msg)
        finally: self._shutdown()

    def _shutdown(self):
        dbg("server stopping workers")
        send_stop(self.context, controller_endpoint("publisher", self.uid))
        send_stop(self.context, controller_endpoint("heartbeat", self.uid))
        self.publisher_thread.join()
        self.heartbeat_thread.join()
        close_all(self.shell, self.control, self.stdin, self.publisher, self.stopper)
        log.debug("server stopped")

    def stop_impl(self):
        self.request_stop = True
        wake(self.context, self.stop_addr)

    def send_shell_impl(self, frames:list): self.shell.send_multipart(frames)
    def send_control_impl(self, frames:list): self.control.send_multipart(frames)
    def send_stdin_impl(self, frames:list): stdin_round_trip(self, self.stdin, frames)
    def publish_impl(self, frames:list, channel: Channel): self.publisher.send_multipart(frames)
    def abort_queue_impl(self, listener, interval:int): abort_queue(self, self.shell, listener, interval)
    def get_control_messenger_impl(self): return self.messenger

    def update_config_impl(self, config: Configuration):
        config.control_port, config.shell_port, config.stdin_port = self.control_port, self.shell_port, self.stdin_port
        config.iopub_port, config.hb_port = self.publisher_thread.port, self.heartbeat_thread.port


class ZMQSplitServer(Server):
    "Shell, control, publisher and heartbeat each own their sockets; subclasses pick which loop runs on the caller."

    def __init__(self, context: zmq.Context, config: Configuration):
        super().__init__(config)
        self.context, self.uid = context, new_guid()[:12]
        self.shell_channel = ShellChannel(context, config, self, self.uid)
        self.publisher_thread = PublisherThread(context, config, self.uid)
        self.heartbeat_thread = HeartbeatThread(context, config, self.uid)
        self.control_channel = ControlChannel(context, config, self, self.uid)
        self.control_stopped = False
        self.threads = []

    def _spawn(self, target, name:str):
        thread = threading.Thread(target=target, name=name, daemon=True)
        self.threads.append(thread)
        thread.start()

    def start_control_thread(self): self._spawn(self.control_channel.run, "control-thread")
    def start_shell_thread(self): self._spawn(self.shell_channel.run, "shell-thread")

    def start_publisher_thread(self):
        self.threads.append(self.publisher_thread)
        self.publisher_thread.start()

    def start_heartbeat_thread(self):
        self.threads.append(self.heartbeat_thread)
        self.heartbeat_thread.start()

    def start_impl(self, start_msg: PubMessage):
        self.control_stopped = False
        try: self.start_server(serialize_iopub(start_msg, self.auth))
        finally:
            for thread in self.threads: thread.join()
            self.threads = []

    @abstractmethod
    def start_server(self, frames:list): ...

    def notify_control_stopped(self): self.control_stopped = True
    def stop_impl(self): self.control_channel.stop()
    def send_shell_impl(self, frames:list): self.shell_channel.send_shell(frames)
    def send_control_impl(self, frames:list): self.control_channel.send_control(frames)
    def send_stdin_impl(self, frames:list): self.shell_channel.send_stdin(frames)
    def abort_queue_impl(self, listener, interval:int): self.shell_channel.abort_queue(listener, interval)
    def get_control_messenger_impl(self): return self.control_channel.messenger

    def publish_impl(self, frames:list, channel: Channel):
        if channel == Channel.CONTROL: self.control_channel.publish(frames)
        else: self.shell_channel.publish(frames)

    def update_config_impl(self, config: Configuration):
        config.control_port = self.control_channel.port
        config.shell_port, config.stdin_port = self.shell_channel.shell_port, self.shell_channel.stdin_port
        config.iopub_port, config.hb_port = self.publisher_thread.port, self.heartbeat_thread.port


class ShellMainServer(ZMQSplitServer):
    "Shell loop on the calling thread."
    def start_server(self, frames:list):
        self.start_publisher_thread()
        self.start_heartbeat_thread()
        self.start_control_thread()
        self.shell_channel.publish(frames)
        self.shell_channel.run()


class ControlMainServer(ZMQSplitServer):
    "Control loop on the calling thread."
    def start_server(self, frames:list):
        self.start_publisher_thread()
        self.start_heartbeat_thread()
        self.start_shell_thread()
        self.control_channel.publish(frames)
        self.control_channel.run()


servers = {"zmq": ZMQServer, "shell-main": ShellMainServer, "control-main": ControlMainServer}


def make_server(context: zmq.Context, config: Configuration, name:str="zmq")->Server:
    try: cls = servers[name]
    except KeyError: raise ValueError(f"unknown server variant {name!r}; expected one of {sorted(servers)}") from None
    return cls(context, config)
