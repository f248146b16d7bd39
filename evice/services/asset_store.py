import requests
from requests.exceptions import RequestException
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol
from urllib.parse import urljoin

logger = logging.getLogger(__name__)

MOCK_PREFIX = "mock:"

# Content served for mock UALs when no knowledge graph node is available
MOCK_CONTENT: Dict[str, str] = {
    "mock:did:dkg:otp:20430/tokenomics": "Tokenomics: 50% Community, 30% Team, 20% Foundation. Vesting 4 years. (Verified via Mock DKG)",
    "mock:did:dkg:otp:20430/roadmap": "Roadmap: Q1 DKG Integration, Q2 Mainnet Launch, Q3 AI Agents Swarm. (Verified via Mock DKG)",
}


class AssetStoreError(Exception):
    """Raised when the asset store cannot be reached or answers garbage."""


class AssetNotFoundError(AssetStoreError):
    """Raised when an asset has no public content."""


@dataclass(frozen=True)
class Asset:
    """A knowledge asset's public text plus provenance metadata."""
    ual: str
    text: str
    source: str
    verifiability: str
    publisher: Optional[str] = None


class AssetStore(Protocol):
    def get(self, ual: str) -> Asset: ...


class MockAssetStore:
    """Serves built-in content for `mock:` UALs."""

    def __init__(self, content: Optional[Dict[str, str]] = None):
        self.content = content if content is not None else MOCK_CONTENT

    def get(self, ual: str) -> Asset:
        logger.info(f"Serving mock content for {ual}")
        return Asset(
            ual=ual,
            text=self.content.get(ual, "Mock data not found."),
            source="Evice Local Cache (Mock Mode)",
            verifiability="Simulated Verification",
        )


class HttpAssetStore:
    """
    Fetches knowledge assets from an HTTP gateway in front of a DKG node.

    Expects GET <base_url>/assets?ual=<ual> to answer with
    {"assertion": {"public": {"text": ..., "author": {"name": ...}}}}.
    """

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url
        self.timeout = timeout

    def get(self, ual: str) -> Asset:
        """
        Fetch the public assertion of an asset.

        Raises:
            AssetNotFoundError: If the asset exists but has no public content
            AssetStoreError: If the request fails or the response is malformed
        """
        api_url = urljoin(self.base_url.rstrip("/") + "/", "assets")
        try:
            response = requests.get(api_url, params={"ual": ual}, timeout=self.timeout)
            response.raise_for_status()
            data: Dict[str, Any] = response.json()
        except RequestException as e:
            logger.error(f"Error fetching asset {ual} from {api_url}: {e}")
            raise AssetStoreError(f"Failed to fetch asset: {e}") from e
        except ValueError as e:
            raise AssetStoreError(f"Invalid asset store response: {e}") from e

        public = (data.get("assertion") or {}).get("public") if isinstance(data, dict) else None
        if not public or not public.get("text"):
            raise AssetNotFoundError("Asset found but empty.")

        return Asset(
            ual=ual,
            text=public["text"],
            source="OriginTrail DKG (NeuroWeb)",
            verifiability="Cryptographically Verified",
            publisher=(public.get("author") or {}).get("name") or "Anonymous",
        )


class RoutingAssetStore:
    """Sends `mock:` UALs to the mock store and everything else over HTTP."""

    def __init__(self, mock: MockAssetStore, remote: Optional[HttpAssetStore] = None):
        self.mock = mock
        self.remote = remote

    def get(self, ual: str) -> Asset:
        if ual.startswith(MOCK_PREFIX):
            return self.mock.get(ual)
        if self.remote is None:
            raise AssetStoreError("ASSET_STORE_URL not configured")
        return self.remote.get(ual)


def create_asset_store(settings) -> RoutingAssetStore:
    remote = HttpAssetStore(settings.ASSET_STORE_URL) if settings.ASSET_STORE_URL else None
    return RoutingAssetStore(MockAssetStore(), remote)
