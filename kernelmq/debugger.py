"Debugger interface; the kernel runs without one unless a builder supplies it."
from abc import ABC, abstractmethod


class Debugger(ABC):
    def __init__(self): self.messenger = None

    def register_control_messenger(self, messenger): self.messenger = messenger

    def process_request(self, header:dict, content:dict)->dict:
        "DAP response for the `debug_request` whose content is `content`."
        return self.process_request_impl(header, content)

    @abstractmethod
    def process_request_impl(self, header:dict, content:dict)->dict: ...


def make_null_debugger(context=None, config=None, user_name:str="", session_id:str="")->Debugger|None: return None


def failed_response(content:dict, message:str="debugger not available")->dict:
    "DAP-shaped failure for a request the kernel cannot serve."
    return dict(type="response", request_seq=content.get("seq", 0), seq=0, success=False,
        command=content.get("command", ""), message=message, body={})
