# tests/test_x402_store.py
"""
Unit tests for x402 ledger store backends.
"""
import threading
from types import SimpleNamespace
from unittest.mock import patch, MagicMock

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError

from evice.x402.store import (
    CAS_SCRIPT,
    FallbackLedgerStore,
    KvRestLedgerStore,
    LedgerStoreError,
    MemoryLedgerStore,
    create_ledger_store,
)


def kv_response(result=None, error=None):
    """Build a mocked requests response from the KV REST API."""
    response = MagicMock()
    response.raise_for_status.return_value = None
    body = {"error": error} if error else {"result": result}
    response.json.return_value = body
    return response


class TestMemoryLedgerStore:
    """Test the in-process store."""

    def test_get_missing_key(self):
        """Missing keys read as None."""
        assert MemoryLedgerStore().get("budget_0xabc") is None

    def test_set_and_get(self):
        """Values round through set/get."""
        store = MemoryLedgerStore()
        store.set("budget_0xabc", "1.5")
        assert store.get("budget_0xabc") == "1.5"

    def test_ttl_expiry(self):
        """Keys with a TTL read as absent once expired."""
        store = MemoryLedgerStore()
        with patch("evice.x402.store.time.time", return_value=1000.0):
            store.set("ref_abc", "used", ttl_seconds=60)
        with patch("evice.x402.store.time.time", return_value=1059.0):
            assert store.get("ref_abc") == "used"
        with patch("evice.x402.store.time.time", return_value=1060.0):
            assert store.get("ref_abc") is None

    def test_no_ttl_never_expires(self):
        """Keys without a TTL persist."""
        store = MemoryLedgerStore()
        with patch("evice.x402.store.time.time", return_value=1000.0):
            store.set("budget_0xabc", "5")
        with patch("evice.x402.store.time.time", return_value=10 ** 9):
            assert store.get("budget_0xabc") == "5"

    def test_set_if_absent(self):
        """Only the first insert wins."""
        store = MemoryLedgerStore()
        assert store.set_if_absent("ref_abc", "used", 3600) is True
        assert store.set_if_absent("ref_abc", "used", 3600) is False

    def test_set_if_absent_after_expiry(self):
        """An expired key can be inserted again."""
        store = MemoryLedgerStore()
        with patch("evice.x402.store.time.time", return_value=1000.0):
            store.set_if_absent("ref_abc", "used", 10)
        with patch("evice.x402.store.time.time", return_value=2000.0):
            assert store.set_if_absent("ref_abc", "used", 10) is True

    def test_compare_and_set_matches(self):
        """CAS writes when the expected value is current."""
        store = MemoryLedgerStore()
        store.set("budget_0xabc", "1")
        assert store.compare_and_set("budget_0xabc", "1", "0.5") is True
        assert store.get("budget_0xabc") == "0.5"

    def test_compare_and_set_stale(self):
        """CAS refuses to write over a changed value."""
        store = MemoryLedgerStore()
        store.set("budget_0xabc", "2")
        assert store.compare_and_set("budget_0xabc", "1", "0.5") is False
        assert store.get("budget_0xabc") == "2"

    def test_compare_and_set_expect_absent(self):
        """CAS with expected=None only writes a new key."""
        store = MemoryLedgerStore()
        assert store.compare_and_set("budget_0xabc", None, "1") is True
        assert store.compare_and_set("budget_0xabc", None, "2") is False
        assert store.get("budget_0xabc") == "1"

    def test_concurrent_set_if_absent(self):
        """Exactly one of many concurrent inserts succeeds."""
        store = MemoryLedgerStore()
        results = []
        barrier = threading.Barrier(20)

        def claim():
            barrier.wait()
            results.append(store.set_if_absent("ref_race", "used", 3600))

        threads = [threading.Thread(target=claim) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1

    def test_clear(self):
        store = MemoryLedgerStore()
        store.set("a", "1")
        store.clear()
        assert store.get("a") is None


class TestKvRestLedgerStore:
    """Test the KV REST backend command mapping."""

    @patch("evice.x402.store.requests.post")
    def test_get(self, mock_post):
        """GET sends the command with bearer auth."""
        mock_post.return_value = kv_response("0.25")
        store = KvRestLedgerStore("https://kv.example.com/", "secret")

        assert store.get("budget_0xabc") == "0.25"

        args, kwargs = mock_post.call_args
        assert args[0] == "https://kv.example.com"
        assert kwargs["json"] == ["GET", "budget_0xabc"]
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["timeout"] == 5.0

    @patch("evice.x402.store.requests.post")
    def test_get_missing(self, mock_post):
        mock_post.return_value = kv_response(None)
        assert KvRestLedgerStore("https://kv", "t").get("nope") is None

    @patch("evice.x402.store.requests.post")
    def test_set_with_ttl(self, mock_post):
        """TTL maps to EX seconds."""
        mock_post.return_value = kv_response("OK")
        KvRestLedgerStore("https://kv", "t").set("ref_abc", "used", ttl_seconds=3600)
        assert mock_post.call_args.kwargs["json"] == ["SET", "ref_abc", "used", "EX", "3600"]

    @patch("evice.x402.store.requests.post")
    def test_set_if_absent_written(self, mock_post):
        """SET NX answering OK means the key was written."""
        mock_post.return_value = kv_response("OK")
        store = KvRestLedgerStore("https://kv", "t")

        assert store.set_if_absent("ref_abc", "used", 3600) is True
        assert mock_post.call_args.kwargs["json"] == ["SET", "ref_abc", "used", "NX", "EX", "3600"]

    @patch("evice.x402.store.requests.post")
    def test_set_if_absent_exists(self, mock_post):
        """SET NX answering null means the key already existed."""
        mock_post.return_value = kv_response(None)
        assert KvRestLedgerStore("https://kv", "t").set_if_absent("ref_abc", "used") is False

    @patch("evice.x402.store.requests.post")
    def test_compare_and_set_uses_script(self, mock_post):
        """CAS runs the Lua script against one key."""
        mock_post.return_value = kv_response(1)
        store = KvRestLedgerStore("https://kv", "t")

        assert store.compare_and_set("budget_0xabc", "1", "0.5") is True
        assert mock_post.call_args.kwargs["json"] == [
            "EVAL", CAS_SCRIPT, "1", "budget_0xabc", "1", "0.5", "0"
        ]

    @patch("evice.x402.store.requests.post")
    def test_compare_and_set_expect_absent(self, mock_post):
        mock_post.return_value = kv_response(0)
        store = KvRestLedgerStore("https://kv", "t")

        assert store.compare_and_set("budget_0xabc", None, "5") is False
        assert mock_post.call_args.kwargs["json"][-1] == "1"

    @patch("evice.x402.store.requests.post")
    def test_backend_error_raises(self, mock_post):
        """Backend error bodies raise LedgerStoreError."""
        mock_post.return_value = kv_response(error="WRONGPASS")
        with pytest.raises(LedgerStoreError, match="WRONGPASS"):
            KvRestLedgerStore("https://kv", "t").get("x")

    @patch("evice.x402.store.requests.post")
    def test_connection_error_raises(self, mock_post):
        """Transport failures raise LedgerStoreError."""
        mock_post.side_effect = RequestsConnectionError("refused")
        with pytest.raises(LedgerStoreError):
            KvRestLedgerStore("https://kv", "t").set("x", "1")


class TestFallbackLedgerStore:
    """Test degradation to the in-memory fallback."""

    def test_uses_primary_when_healthy(self):
        primary = MemoryLedgerStore()
        store = FallbackLedgerStore(primary)

        store.set("budget_0xabc", "3")

        assert primary.get("budget_0xabc") == "3"
        assert store.fallback.get("budget_0xabc") is None

    def test_degrades_on_backend_error(self):
        """Backend failures are served from memory instead of raising."""
        primary = MagicMock()
        primary.set.side_effect = LedgerStoreError("down")
        primary.get.side_effect = LedgerStoreError("down")
        primary.set_if_absent.side_effect = LedgerStoreError("down")
        store = FallbackLedgerStore(primary)

        store.set("budget_0xabc", "3")
        assert store.get("budget_0xabc") == "3"
        assert store.set_if_absent("ref_abc", "used", 60) is True
        assert store.fallback.get("ref_abc") == "used"

    def test_missing_record_when_backend_down(self):
        """A key never written reads as absent while the backend is down."""
        primary = MagicMock()
        primary.get.side_effect = LedgerStoreError("down")
        assert FallbackLedgerStore(primary).get("budget_0xabc") is None

    def test_other_errors_propagate(self):
        """Only LedgerStoreError triggers the fallback."""
        primary = MagicMock()
        primary.get.side_effect = RuntimeError("bug")
        with pytest.raises(RuntimeError):
            FallbackLedgerStore(primary).get("x")


class TestCreateLedgerStore:
    """Test backend selection from configuration."""

    def test_memory_when_unconfigured(self):
        settings = SimpleNamespace(KV_REST_API_URL=None, KV_REST_API_TOKEN=None)
        assert isinstance(create_ledger_store(settings), MemoryLedgerStore)

    def test_memory_when_token_missing(self):
        settings = SimpleNamespace(KV_REST_API_URL="https://kv", KV_REST_API_TOKEN=None)
        assert isinstance(create_ledger_store(settings), MemoryLedgerStore)

    def test_kv_with_fallback_when_configured(self):
        settings = SimpleNamespace(KV_REST_API_URL="https://kv", KV_REST_API_TOKEN="t")
        store = create_ledger_store(settings)

        assert isinstance(store, FallbackLedgerStore)
        assert isinstance(store.primary, KvRestLedgerStore)
        assert isinstance(store.fallback, MemoryLedgerStore)
