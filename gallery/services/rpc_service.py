"""
JSON-RPC pass-through to Alchemy node endpoints (used by Farcaster auth on Optimism).
"""
import logging
from typing import Any, Dict, Optional

import aiohttp

from gallery.config import Settings, settings as default_settings
from gallery.entities import Chain
from gallery.errors import GalleryError, UpstreamError
from gallery.services.base_client import BaseAPIClient

logger = logging.getLogger(__name__)

INTERNAL_ERROR = -32603


def rpc_error(request_id: Any, message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "error": {
            "code": INTERNAL_ERROR,
            "message": "Internal JSON-RPC error",
            "data": {"originalError": message, **(data or {})},
        },
        "id": request_id,
    }


class RPCErrorReply(UpstreamError):
    """Upstream answered 4xx with its own JSON-RPC error object."""

    def __init__(self, payload: Dict[str, Any], upstream_status: int):
        super().__init__("rpc returned a JSON-RPC error", upstream_status=upstream_status)
        self.payload = payload


class RPCService(BaseAPIClient):
    name = "rpc"

    def __init__(self, session=None, config: Optional[Settings] = None, **kwargs):
        self.config = config or default_settings
        kwargs.setdefault("timeout", self.config.REQUEST_TIMEOUT)
        kwargs.setdefault("max_retries", 0)
        super().__init__(session, **kwargs)

    async def _handle_response(self, response: aiohttp.ClientResponse) -> Any:
        if 400 <= response.status < 500 and response.status != 429:
            try:
                payload = await response.json(content_type=None)
            except (ValueError, aiohttp.ContentTypeError):
                payload = None
            if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
                raise RPCErrorReply(payload, response.status)
        return await super()._handle_response(response)

    async def forward(self, chain: Chain, body: Any) -> Any:
        """POST ``body`` to the chain's node; raises GalleryError on failure."""
        result = await self.post(self.config.alchemy_rpc_url(Chain.parse(chain).network), json_data=body)
        if result is None:
            raise UpstreamError("rpc returned an empty response")
        return result

    async def forward_or_error(self, chain: Chain, body: Any):
        """Returns ``(status, payload)``; failures become a JSON-RPC error envelope."""
        request_id = body.get("id") if isinstance(body, dict) else None
        try:
            return 200, await self.forward(chain, body)
        except RPCErrorReply as e:
            logger.info("%s RPC error passed through (HTTP %s)", Chain.parse(chain).value, e.upstream_status)
            return e.upstream_status, e.payload
        except GalleryError as e:
            logger.warning("%s RPC forward failed: %s", Chain.parse(chain).value, e.message)
            return 502, rpc_error(request_id, e.message, {"status": e.upstream_status})
