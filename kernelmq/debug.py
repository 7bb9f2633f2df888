"Debug switches for kernelmq: env-driven logging setup, faulthandler, message tracing."
import faulthandler, logging, os, signal, sys, threading

def envbool(name: str)->bool:
    v = (os.environ.get(name) or "").strip().lower()
    return v not in ("", "0", "false", "no")

enabled = envbool("KERNELMQ_DEBUG")
trace_msgs = envbool("KERNELMQ_DEBUG_MSGS")
_lock = threading.Lock()

def setup():
    "Initialize debug infrastructure: logging, faulthandler, SIGUSR1 handler."
    if not enabled: return
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=logging.DEBUG, stream=sys.__stderr__,
            format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s")
    faulthandler.enable(file=sys.__stderr__)
    if hasattr(signal, "SIGUSR1"): faulthandler.register(signal.SIGUSR1, file=sys.__stderr__)

def dbg(*args, **kw):
    if enabled:
        with _lock: print("[kernelmq]", *args, **kw, file=sys.__stderr__, flush=True)

def tlog(log, prefix: str, header: dict):
    "Log message flow at high level: msg_type and msg_id."
    if not trace_msgs: return
    log.warning("%s type=%s id=%s", prefix, header.get("msg_type"), header.get("msg_id"))
