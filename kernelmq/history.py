"Input history: the manager interface and an in-memory store."
import re
from abc import ABC, abstractmethod

from .requests import HistoryRequest


class HistoryManager(ABC):
    def configure(self): self.configure_impl()
    def configure_impl(self): pass

    def store_inputs(self, session:int, line_num:int, input:str, output:str=""):
        self.store_inputs_impl(session, line_num, input, output)

    def process_request(self, content:dict)->dict:
        "Answer a `history_request` content dict."
        req = HistoryRequest.from_content(dict(dict(hist_access_type="tail"), **content))
        if req.hist_access_type == "tail": return self.get_tail(req.n, req.raw, req.output)
        if req.hist_access_type == "range":
            return self.get_range(req.session, req.start, req.stop, req.raw, req.output)
        if req.hist_access_type == "search": return self.search(req.pattern, req.raw, req.output, req.n, req.unique)
        return dict(status="ok", history=[])

    def get_tail(self, n:int, raw:bool=True, output:bool=False)->dict: return self.get_tail_impl(n, raw, output)

    def get_range(self, session:int, start:int, stop:int, raw:bool=True, output:bool=False)->dict:
        return self.get_range_impl(session, start, stop, raw, output)

    def search(self, pattern:str, raw:bool=True, output:bool=False, n:int=10, unique:bool=False)->dict:
        return self.search_impl(pattern, raw, output, n, unique)

    @abstractmethod
    def store_inputs_impl(self, session:int, line_num:int, input:str, output:str): ...
    @abstractmethod
    def get_tail_impl(self, n:int, raw:bool, output:bool)->dict: ...
    @abstractmethod
    def get_range_impl(self, session:int, start:int, stop:int, raw:bool, output:bool)->dict: ...
    @abstractmethod
    def search_impl(self, pattern:str, raw:bool, output:bool, n:int, unique:bool)->dict: ...


def glob_to_regex(pattern:str)->str:
    return "".join(".*" if c == "*" else "." if c == "?" else re.escape(c) for c in pattern)


def dedupe_adjacent(entries:list)->list:
    return [e for i, e in enumerate(entries) if i == 0 or e != entries[i - 1]]


class InMemoryHistoryManager(HistoryManager):
    """History kept in a list for the life of the process.

    Entries are `[session, line_num, input]`, or `[session, line_num, input, output]` when output is requested.
    `get_range` indexes the stored entries from zero with `stop` exclusive."""

    def __init__(self): self.history = []

    def store_inputs_impl(self, session:int, line_num:int, input:str, output:str):
        self.history.append((str(session), str(line_num), input, output))

    def _entries(self, items, output:bool)->list: return [list(e) if output else list(e[:3]) for e in items]

    def get_tail_impl(self, n:int, raw:bool, output:bool)->dict:
        items = self.history[-n:] if n > 0 else []
        return dict(status="ok", history=self._entries(items, output))

    def get_range_impl(self, session:int, start:int, stop:int, raw:bool, output:bool)->dict:
        size = len(self.history)
        if start > stop or start > size:
            return dict(status="error", ename="history_request_error",
                evalue="get_range: start is too high given stop or current history", history=[])
        return dict(status="ok", history=self._entries(self.history[start:min(stop, size)], output))

    def search_impl(self, pattern:str, raw:bool, output:bool, n:int, unique:bool)->dict:
        regex = re.compile(glob_to_regex(pattern))
        found = self._entries([e for e in self.history if regex.search(e[2])], output)
        if unique: found = dedupe_adjacent(found)
        return dict(status="ok", history=found[-n:] if n > 0 else [])
