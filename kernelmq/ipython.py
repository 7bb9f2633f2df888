"IPython-backed interpreter: runs cells in an InteractiveShell and turns its output into kernel events."
import builtins, getpass, logging, sys
from contextlib import contextmanager, redirect_stderr, redirect_stdout
from importlib.metadata import PackageNotFoundError, version

from IPython.core.displayhook import DisplayHook
from IPython.core.displaypub import DisplayPublisher
from IPython.core.interactiveshell import InteractiveShell
from IPython.utils.tokenutil import line_at_cursor, token_at_cursor

from .interpreter import (Interpreter, blocking_input_request, create_complete_reply, create_error_reply,
    create_info_reply, create_inspect_reply, create_is_complete_reply, create_successful_reply, register_interpreter)

log = logging.getLogger("kernelmq.ipython")


class StdinNotImplementedError(RuntimeError): pass


class KernelStream:
    def __init__(self, name:str, interpreter: Interpreter):
        "File-like sink publishing complete lines as `stream` events."
        self.name, self.interpreter, self.buffer = name, interpreter, ""

    def write(self, value)->int:
        if value is None: return 0
        text = value.decode(errors="replace") if isinstance(value, bytes) else str(value)
        if not text: return 0
        self.buffer += text
        if "\n" in self.buffer:
            head, _, self.buffer = self.buffer.rpartition("\n")
            self.interpreter.publish_stream(self.name, head + "\n")
        return len(text)

    def writelines(self, lines)->int: return sum(self.write(line) for line in lines)

    def flush(self):
        if self.buffer:
            self.interpreter.publish_stream(self.name, self.buffer)
            self.buffer = ""

    def isatty(self)->bool: return False


class KernelDisplayPublisher(DisplayPublisher):
    def __init__(self, interpreter: Interpreter, **kwargs):
        super().__init__(**kwargs)
        self.interpreter = interpreter

    def publish(self, data, metadata=None, transient=None, update=False, **kwargs):
        "Forward display data (or an update of it) to iopub."
        if update: self.interpreter.update_display_data(data, metadata, transient)
        else: self.interpreter.display_data(data, metadata, transient)

    def clear_output(self, wait:bool=False): self.interpreter.clear_output(wait)


class KernelDisplayHook(DisplayHook):
    "Captures the last expression's formatted value; the interpreter publishes it as `execute_result`."
    def __init__(self, shell=None):
        super().__init__(shell=shell)
        self.reset()

    def reset(self): self.last, self.last_metadata = None, {}
    def write_output_prompt(self): pass

    def write_format_data(self, format_dict, md_dict=None):
        self.last, self.last_metadata = format_dict, md_dict or {}

    def finish_displayhook(self): self._is_active = False


class IPythonInterpreter(Interpreter):
    def __init__(self, user_ns:dict|None=None):
        super().__init__()
        self.user_ns, self.shell = user_ns, None

    def configure_impl(self):
        shell = self.shell = InteractiveShell.instance(user_ns=self.user_ns)
        shell.display_pub = KernelDisplayPublisher(self, shell=shell)
        shell.displayhook = KernelDisplayHook(shell=shell)
        shell.display_trap.hook = shell.displayhook
        shell._last_traceback = None
        def _showtraceback(etype, evalue, stb): shell._last_traceback = stb
        shell._showtraceback = _showtraceback
        self.stdout, self.stderr = KernelStream("stdout", self), KernelStream("stderr", self)
        register_interpreter(self)

    @contextmanager
    def _stdin_hooks(self, allow_stdin:bool):
        def _request(prompt:str, password:bool)->str:
            if not allow_stdin: raise StdinNotImplementedError("input was called, but this frontend does not support input requests.")
            self.stdout.flush()
            self.stderr.flush()
            return blocking_input_request(str(prompt), password)
        def _input(prompt=""): return _request(prompt, False)
        def _getpass(prompt="Password: ", stream=None): return _request(prompt, True)
        saved = builtins.input, getpass.getpass
        builtins.input, getpass.getpass = _input, _getpass
        try: yield
        finally: builtins.input, getpass.getpass = saved

    def execute_request_impl(self, execution_count:int, code:str, silent:bool, store_history:bool,
        user_expressions:dict, allow_stdin:bool)->dict:
        shell = self.shell
        shell.displayhook.reset()
        shell._last_traceback = None
        shell.execution_count = execution_count
        try:
            with redirect_stdout(self.stdout), redirect_stderr(self.stderr), self._stdin_hooks(allow_stdin):
                result = shell.run_cell(code, store_history=store_history, silent=silent)
        finally:
            self.stdout.flush()
            self.stderr.flush()
        payload = shell.payload_manager.read_payload()
        shell.payload_manager.clear_payload()
        err = result.error_in_exec or result.error_before_exec
        if err is not None:
            ename, evalue, tb = type(err).__name__, str(err), shell._last_traceback or []
            self.publish_execution_error(ename, evalue, tb)
            return create_error_reply(ename, evalue, tb) | dict(payload=payload, user_expressions={})
        if not silent and shell.displayhook.last is not None:
            self.publish_execution_result(execution_count, shell.displayhook.last, shell.displayhook.last_metadata)
        return create_successful_reply(payload, shell.user_expressions(user_expressions or {}))

    def complete_request_impl(self, code:str, cursor_pos:int)->dict:
        if cursor_pos is None: cursor_pos = len(code)
        line, offset = line_at_cursor(code, cursor_pos)
        txt, matches = self.shell.complete("", line, cursor_pos - offset)
        return create_complete_reply(list(matches), cursor_pos - len(txt), cursor_pos)

    def inspect_request_impl(self, code:str, cursor_pos:int, detail_level:int)->dict:
        if cursor_pos is None: cursor_pos = len(code)
        name = token_at_cursor(code, cursor_pos)
        if not name: return create_inspect_reply(False)
        try: bundle = self.shell.object_inspect_mime(name, detail_level=detail_level)
        except KeyError: return create_inspect_reply(False)
        if not self.shell.enable_html_pager: bundle.pop("text/html", None)
        return create_inspect_reply(True, bundle)

    def is_complete_request_impl(self, code:str)->dict:
        status, indent_spaces = self.shell.input_transformer_manager.check_complete(code)
        return create_is_complete_reply(status, " " * (indent_spaces or 0))

    def kernel_info_request_impl(self)->dict:
        try: impl_version = version("kernelmq")
        except PackageNotFoundError: impl_version = "0.0.0+local"
        py_version = ".".join(str(x) for x in sys.version_info[:3])
        return create_info_reply(implementation="kernelmq", implementation_version=impl_version, language_name="python",
            language_version=py_version, language_mimetype="text/x-python", language_file_extension=".py",
            pygments_lexer="ipython3", language_codemirror_mode=dict(name="ipython", version=3),
            language_nbconvert_exporter="python", banner=f"kernelmq {impl_version} (Python {py_version})")

    def shutdown_request_impl(self): log.info("shutdown requested")

    def internal_request_impl(self, request:dict)->dict:
        "Supports `{'action': 'user_ns_keys'}`; everything else is refused."
        if request.get("action") == "user_ns_keys":
            return dict(status="ok", keys=sorted(k for k in self.shell.user_ns if not k.startswith("_")))
        return super().internal_request_impl(request)
