"Connection configuration and environment knobs."
import json, os
from dataclasses import asdict, dataclass

port_names = ("control_port", "shell_port", "stdin_port", "iopub_port", "hb_port")


def env_float(name:str, default:float)->float:
    "Return float env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return float(raw)
    except ValueError: return default


def env_int(name:str, default:int)->int: return int(env_float(name, default))


@dataclass
class Configuration:
    transport:str = "tcp"
    ip:str = "127.0.0.1"
    control_port:str = ""
    shell_port:str = ""
    stdin_port:str = ""
    iopub_port:str = ""
    hb_port:str = ""
    signature_scheme:str = "hmac-sha256"
    key:str = ""

    @classmethod
    def from_dict(cls, data:dict)->"Configuration":
        scheme = data.get("signature_scheme") or ""
        ports = {name: _port_str(data.get(name)) for name in port_names}
        return cls(transport=data.get("transport", "tcp"), ip=data.get("ip", "127.0.0.1"), signature_scheme=scheme,
            key=data.get("key", "") if scheme else "", **ports)

    @classmethod
    def from_file(cls, path:str)->"Configuration":
        "Load connection info from JSON connection file at `path`."
        with open(path, encoding="utf-8") as f: data = json.load(f)
        return cls.from_dict(data)

    def to_dict(self)->dict:
        "On-disk form: ports as integers (0 when unassigned)."
        data = asdict(self)
        for name in port_names: data[name] = int(data[name] or 0)
        return data

    def write(self, path:str):
        with open(path, "w", encoding="utf-8") as f: json.dump(self.to_dict(), f, indent=2)

    def addr(self, port:str)->str:
        if self.transport == "tcp": return f"tcp://{self.ip}:{port}"
        return f"{self.transport}://{self.ip}-{port}"


def _port_str(value)->str:
    if value in (None, "", 0): return ""
    return str(int(value))


def load_configuration(path:str)->Configuration: return Configuration.from_file(path)
