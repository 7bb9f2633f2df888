"Kernel composition: ids, server, dispatch engine and collaborators, plus the process entry point."
import getpass, logging, signal, threading

import zmq

from .config import Configuration
from .core import KernelCore
from .debugger import make_null_debugger
from .history import InMemoryHistoryManager
from .ipython import IPythonInterpreter
from .logger import make_logger
from .message import new_guid
from .server import make_server
from . import debug as _dbg_mod

log = logging.getLogger("kernelmq.kernel")
dbg = _dbg_mod.dbg


def get_user_name()->str:
    try: return getpass.getuser()
    except (KeyError, OSError, ImportError): return "unspecified user"


class Kernel:
    def __init__(self, config: Configuration, user_name:str, interpreter, server_builder=make_server,
        history_manager=None, logger=None, debugger_builder=make_null_debugger, context: zmq.Context|None=None,
        server_name:str="zmq"):
        "Build the server (filling in bound ports on `config`) and wire the core to `interpreter`."
        self.config, self.user_name, self.interpreter = config, user_name, interpreter
        self.context = context or zmq.Context.instance()
        self.kernel_id, self.session_id = new_guid(), new_guid()
        if config.signature_scheme and not config.key: config.key = new_guid()
        self.server = server_builder(self.context, config, server_name)
        self.server.update_config(config)
        self.history_manager = history_manager or InMemoryHistoryManager()
        self.logger = logger or make_logger()
        self.debugger = debugger_builder(self.context, config, user_name, self.session_id)
        self.core = KernelCore(self.kernel_id, user_name, self.session_id, self.logger, self.server, interpreter,
            self.history_manager, self.debugger)
        messenger = self.server.control_messenger
        if self.debugger is not None: self.debugger.register_control_messenger(messenger)
        interpreter.register_control_messenger(messenger)
        interpreter.register_history_manager(self.history_manager)
        self.history_manager.configure()
        interpreter.configure()

    def start(self):
        "Serve until a shutdown request or `stop`."
        _dbg_mod.setup()
        dbg(f"kernel {self.kernel_id} starting")
        prev_sigint = None
        if threading.current_thread() is threading.main_thread(): prev_sigint = signal.signal(signal.SIGINT, self.handle_sigint)
        try: self.server.start(self.core.build_start_msg())
        finally:
            if prev_sigint is not None: signal.signal(signal.SIGINT, prev_sigint)
        log.info("kernel %s stopped", self.kernel_id)

    def stop(self):
        self.interpreter.shutdown_request()
        self.server.stop()

    def handle_sigint(self, signum, frame):
        "Interrupt the running cell, whichever thread runs it; ignored while idle."
        if not self.core.interrupt(): dbg("SIGINT while idle; ignored")


def run_kernel(connection_file:str, server:str="zmq"):
    "Run kernel given a connection file path."
    signal.signal(signal.SIGINT, signal.default_int_handler)
    config = Configuration.from_file(connection_file)
    before = config.to_dict()
    kernel = Kernel(config, get_user_name(), IPythonInterpreter(), server_name=server)
    if config.to_dict() != before: config.write(connection_file)
    kernel.start()
