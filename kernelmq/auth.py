"Message signing: HMAC over the four payload segments, or nothing at all."
import hashlib, hmac, threading
from abc import ABC, abstractmethod

# scheme name -> hashlib digest name
digests = {"hmac-md5": "md5", "hmac-sha1": "sha1", "hmac-ripemd160": "ripemd160", "hmac-blake2b512": "blake2b",
    "hmac-blake2s256": "blake2s", "hmac-sha224": "sha224", "hmac-sha256": "sha256", "hmac-sha384": "sha384",
    "hmac-sha512": "sha512"}


class UnsupportedSchemeError(ValueError): pass


class Authentication(ABC):
    def sign(self, header, parent_header, metadata, content)->str:
        "Signature over the raw segments, in wire order."
        return self.sign_impl(header, parent_header, metadata, content)

    def verify(self, signature, header, parent_header, metadata, content)->bool:
        return self.verify_impl(signature, header, parent_header, metadata, content)

    @abstractmethod
    def sign_impl(self, header, parent_header, metadata, content)->str: ...

    @abstractmethod
    def verify_impl(self, signature, header, parent_header, metadata, content)->bool: ...


class NoAuthentication(Authentication):
    def sign_impl(self, header, parent_header, metadata, content)->str: return ""
    def verify_impl(self, signature, header, parent_header, metadata, content)->bool: return True


class HMACAuthentication(Authentication):
    def __init__(self, scheme:str, key:str|bytes):
        "HMAC signer for `scheme` (e.g. `hmac-sha256`) keyed by `key`."
        digest = digests.get(scheme)
        if digest is None: raise UnsupportedSchemeError(f"unsupported signature scheme: {scheme!r}")
        if isinstance(key, str): key = key.encode()
        try: self.base = hmac.new(key, digestmod=digest)
        except ValueError as err: raise UnsupportedSchemeError(f"digest {digest!r} unavailable: {err}") from err
        self.scheme = scheme
        self.lock = threading.Lock()

    def _digest(self, segments)->str:
        with self.lock: h = self.base.copy()
        for seg in segments: h.update(seg)
        return h.hexdigest()

    def sign_impl(self, header, parent_header, metadata, content)->str:
        return self._digest((header, parent_header, metadata, content))

    def verify_impl(self, signature, header, parent_header, metadata, content)->bool:
        if isinstance(signature, str): signature = signature.encode("utf-8")
        expected = self._digest((header, parent_header, metadata, content)).encode("ascii")
        return hmac.compare_digest(expected, bytes(signature).lower())


def make_authentication(scheme:str, key:str|bytes="")->Authentication:
    "Build the signer for a configured scheme; `''` and `'none'` disable signing."
    if scheme in ("", "none"): return NoAuthentication()
    return HMACAuthentication(scheme, key)
