# evice/x402/store.py
"""
Key/value storage behind the x402 budget ledger.

Two kinds of keys live here:
- budget_<address>: decimal balance strings
- ref_<reference>: spent payment references, written with a TTL

Backends:
- MemoryLedgerStore: in-process dict, lost on restart
- KvRestLedgerStore: Vercel KV / Upstash REST API
- FallbackLedgerStore: durable primary that degrades to memory when the
  backend is unreachable

The conditional writes (set_if_absent, compare_and_set) are what make
check-then-write ledger operations safe under concurrent requests.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import RequestException

logger = logging.getLogger(__name__)

# Lua script for compare-and-set. ARGV[1] is the expected value, ARGV[2] is
# the new value, ARGV[3] is "1" when the key is expected to be absent.
CAS_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[3] == '1' then
  if current then return 0 end
elseif current ~= ARGV[1] then
  return 0
end
redis.call('SET', KEYS[1], ARGV[2])
return 1
"""


class LedgerStoreError(Exception):
    """Raised when a durable backend cannot complete an operation."""


class LedgerStore:
    """
    Interface shared by all ledger backends.

    Values are strings. A TTL (in seconds) auto-expires a key; an expired key
    reads as absent.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """Write the key only if it does not exist. Returns True if written."""
        raise NotImplementedError

    def compare_and_set(self, key: str, expected: Optional[str], new: str) -> bool:
        """
        Replace the value only if it still equals `expected`.

        `expected=None` means the key must be absent. Returns True if written.
        """
        raise NotImplementedError


@dataclass
class _Entry:
    value: str
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class MemoryLedgerStore(LedgerStore):
    """
    In-process ledger store.

    Thread-safe: every operation runs under one lock, so each conditional
    write is atomic with respect to other requests in this process.
    """

    def __init__(self):
        self._data: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _read(self, key: str) -> Optional[str]:
        # Caller holds the lock
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(time.time()):
            del self._data[key]
            return None
        return entry.value

    def _write(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        expires_at = time.time() + ttl_seconds if ttl_seconds else None
        self._data[key] = _Entry(value=value, expires_at=expires_at)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            self._write(key, value, ttl_seconds)

    def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        with self._lock:
            if self._read(key) is not None:
                return False
            self._write(key, value, ttl_seconds)
            return True

    def compare_and_set(self, key: str, expected: Optional[str], new: str) -> bool:
        with self._lock:
            if self._read(key) != expected:
                return False
            # Balance keys never carry a TTL
            self._write(key, new, None)
            return True

    def clear(self) -> None:
        """Drop every key (useful for testing)."""
        with self._lock:
            self._data.clear()


class KvRestLedgerStore(LedgerStore):
    """
    Ledger store backed by a Redis-compatible REST API (Vercel KV / Upstash).

    Each command is POSTed as a JSON array, e.g. ["SET", "k", "v", "EX", 60],
    and the response carries {"result": ...} or {"error": ...}.
    """

    def __init__(self, url: str, token: str, timeout: float = 5.0):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _command(self, *args: Any) -> Any:
        """
        Execute one command against the REST endpoint.

        Raises:
            LedgerStoreError: On transport failures or backend errors
        """
        try:
            response = requests.post(
                self.url,
                json=[str(arg) for arg in args],
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout
            )
            response.raise_for_status()
            body = response.json()
        except (RequestException, ValueError) as e:
            raise LedgerStoreError(f"KV request failed ({args[0]}): {e}") from e

        if "error" in body:
            raise LedgerStoreError(f"KV error ({args[0]}): {body['error']}")

        return body.get("result")

    def get(self, key: str) -> Optional[str]:
        result = self._command("GET", key)
        return None if result is None else str(result)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        args: List[Any] = ["SET", key, value]
        if ttl_seconds:
            args += ["EX", ttl_seconds]
        self._command(*args)

    def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        args: List[Any] = ["SET", key, value, "NX"]
        if ttl_seconds:
            args += ["EX", ttl_seconds]
        # SET NX answers "OK" when written and null otherwise
        return self._command(*args) == "OK"

    def compare_and_set(self, key: str, expected: Optional[str], new: str) -> bool:
        result = self._command(
            "EVAL", CAS_SCRIPT, 1, key,
            expected if expected is not None else "",
            new,
            "1" if expected is None else "0"
        )
        return int(result or 0) == 1


class FallbackLedgerStore(LedgerStore):
    """
    Durable store with an in-memory fallback.

    Any LedgerStoreError from the primary is logged and the operation is
    served by the fallback instead, so a degraded backend never fails a
    request. Keys written to the fallback are not replayed to the primary.
    """

    def __init__(self, primary: LedgerStore, fallback: Optional[LedgerStore] = None):
        self.primary = primary
        self.fallback = fallback or MemoryLedgerStore()

    def _call(self, operation: str, *args: Any) -> Any:
        try:
            return getattr(self.primary, operation)(*args)
        except LedgerStoreError as e:
            logger.warning(f"x402: Ledger backend unavailable, using in-memory fallback for {operation}: {e}")
            return getattr(self.fallback, operation)(*args)

    def get(self, key: str) -> Optional[str]:
        return self._call("get", key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._call("set", key, value, ttl_seconds)

    def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        return self._call("set_if_absent", key, value, ttl_seconds)

    def compare_and_set(self, key: str, expected: Optional[str], new: str) -> bool:
        return self._call("compare_and_set", key, expected, new)


def create_ledger_store(settings) -> LedgerStore:
    """
    Select the ledger backend from configuration.

    Returns a FallbackLedgerStore over the KV REST backend when
    KV_REST_API_URL and KV_REST_API_TOKEN are both set, otherwise a
    MemoryLedgerStore.
    """
    if settings.KV_REST_API_URL and settings.KV_REST_API_TOKEN:
        logger.info("x402: Using KV REST ledger store with in-memory fallback")
        return FallbackLedgerStore(
            KvRestLedgerStore(settings.KV_REST_API_URL, settings.KV_REST_API_TOKEN)
        )

    logger.warning("x402: KV_REST_API_URL not configured - ledger state is in-memory and lost on restart")
    return MemoryLedgerStore()
