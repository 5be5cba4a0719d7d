# routers.py
import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

from gallery import __version__
from gallery.cache import identity_cache, nft_page_cache
from gallery.classifiers import is_blocklisted
from gallery.entities import AggregateOptions, Chain, normalize_address
from gallery.errors import ConfigError, InvalidArgumentError, NotFoundError
from gallery.media_proxy import content_disposition
from gallery.models import (
    CollectionFriendsResponse,
    ErrorResponse,
    HealthResponse,
    NFTListResponse,
    NFTMetadataResponse,
    NFTPageResponse,
    NFTsRequest,
    ProfileResponse,
    SearchResponse,
    SpamCheckResponse,
    SpamContractsResponse,
)
from gallery.normalizer import normalize, sort_nfts
from gallery.services.rpc_service import rpc_error

logger = logging.getLogger(__name__)

api_router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or malformed parameter"},
    500: {"model": ErrorResponse, "description": "Upstream or configuration error"},
}


# ============================================================================
# DEPENDENCIES - services live on app.state (see app.py lifespan)
# ============================================================================

def get_resolver(request: Request):
    return request.app.state.resolver


def get_aggregator(request: Request):
    return request.app.state.aggregator


def get_friends_service(request: Request):
    return request.app.state.collection_friends


def get_alchemy(request: Request):
    return request.app.state.alchemy


def get_zapper(request: Request):
    return request.app.state.zapper


def get_media_proxy(request: Request):
    return request.app.state.media_proxy


def get_rpc(request: Request):
    return request.app.state.rpc


# ============================================================================
# HELPERS
# ============================================================================

def _split_list(value: Any) -> List[str]:
    """Accepts a list, a JSON list string or a comma separated string."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            items.extend(_split_list(item))
        return items
    text = str(value).strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            raise InvalidArgumentError("addresses must be a JSON list or comma separated")
        return _split_list(parsed)
    return [part.strip() for part in text.split(",") if part.strip()]


def _require_address(value: Optional[str], field: str) -> str:
    address = normalize_address(value)
    if address is None:
        if not value:
            raise InvalidArgumentError(f"{field} is required")
        raise InvalidArgumentError(f"{field} must be a valid EVM address")
    return address


async def _list_nfts(params: NFTsRequest, resolver, aggregator) -> NFTListResponse:
    addresses = _split_list(params.address) + _split_list(params.addresses)
    profile = None
    handle = params.username or (str(params.fid) if params.fid is not None else None)
    if handle:
        profile = await resolver.resolve(handle)
        addresses = profile.all_addresses() + addresses
    if not addresses:
        if profile is not None:
            raise NotFoundError(f"No wallets linked to {profile.username or profile.fid}")
        raise InvalidArgumentError("address, addresses, username or fid is required")
    if not 1 <= params.pageSize <= 100:
        raise InvalidArgumentError("pageSize must be between 1 and 100")
    if params.sort and params.sort not in ("recent", "value", "name", "collection"):
        raise InvalidArgumentError(f"Unsupported sort: {params.sort}")

    chain_names = _split_list(params.chains) or [Chain.ETH.value]
    opts = AggregateOptions(
        chains=[Chain.parse(c) for c in chain_names],
        exclude_spam=params.excludeSpam,
        exclude_airdrops=params.excludeAirdrops,
        page_size=params.pageSize,
        max_nfts_per_wallet=params.maxPerWallet,
        max_total_nfts=params.maxTotal,
        aggressive_spam=params.aggressiveSpam,
    )
    result = await aggregator.aggregate(addresses, opts)
    nfts = sort_nfts(result.nfts, params.sort)
    return NFTListResponse(
        nfts=[n.to_dict() for n in nfts],
        totalCount=len(nfts),
        perWallet=result.per_wallet,
        warnings=[w.to_dict() for w in result.warnings],
        addresses=list(result.per_wallet),
        profile=profile.to_dict() if profile else None,
    )


# ============================================================================
# ENDPOINTS
# ============================================================================

@api_router.get(
    "/farcaster-user",
    response_model=ProfileResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
    summary="Resolve a Farcaster user",
)
async def get_farcaster_user(
    username: Optional[str] = Query(None, description="Username, @username, profile URL or FID"),
    resolver=Depends(get_resolver),
):
    """Resolve a handle to its profile and linked wallet addresses."""
    if not username or not username.strip():
        raise InvalidArgumentError("username is required")
    identity = await resolver.resolve(username)
    return ProfileResponse(profile=identity.to_dict())


@api_router.get("/farcaster-search", response_model=SearchResponse, responses=ERROR_RESPONSES)
async def search_farcaster_users(
    q: Optional[str] = Query(None, description="Username prefix"),
    limit: int = Query(10, ge=1, le=100),
    resolver=Depends(get_resolver),
):
    users = await resolver.search(q or "", limit)
    return SearchResponse(users=[u.to_dict() for u in users])


@api_router.get(
    "/collection-friends",
    response_model=CollectionFriendsResponse,
    responses=ERROR_RESPONSES,
    summary="Followed accounts holding a collection",
)
async def get_collection_friends(
    contractAddress: Optional[str] = Query(None),
    fid: Optional[str] = Query(None),
    network: str = Query("eth"),
    limit: int = Query(50, ge=0),
    cursor: Optional[str] = Query(None),
    service=Depends(get_friends_service),
):
    """
    Intersects the accounts ``fid`` follows with the holders of
    ``contractAddress``. Either both upstream walks succeed or the request
    fails; there are no partial answers.
    """
    contract = _require_address(contractAddress, "contractAddress")
    if not fid:
        raise InvalidArgumentError("fid is required")
    result = await service.collection_friends(fid, contract, Chain.parse(network), limit=limit, cursor=cursor)
    return CollectionFriendsResponse(
        contractAddress=contract,
        friends=[f.to_dict() for f in result.friends],
        totalFriends=result.total,
        hasMore=result.has_more,
    )


@api_router.get(
    "/nfts",
    response_model=NFTListResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse}},
    summary="Aggregate NFTs across wallets and chains",
)
async def get_nfts(
    address: Optional[str] = Query(None),
    addresses: Optional[List[str]] = Query(None),
    username: Optional[str] = Query(None),
    fid: Optional[int] = Query(None),
    chains: Optional[List[str]] = Query(None),
    excludeSpam: bool = Query(True),
    excludeAirdrops: bool = Query(True),
    aggressiveSpam: bool = Query(False),
    pageSize: int = Query(100),
    maxPerWallet: Optional[int] = Query(None, ge=0),
    maxTotal: Optional[int] = Query(None, ge=0),
    sort: Optional[str] = Query(None, description="recent, value, name or collection"),
    resolver=Depends(get_resolver),
    aggregator=Depends(get_aggregator),
):
    params = NFTsRequest(
        address=address,
        addresses=addresses,
        username=username,
        fid=fid,
        chains=chains,
        excludeSpam=excludeSpam,
        excludeAirdrops=excludeAirdrops,
        aggressiveSpam=aggressiveSpam,
        pageSize=pageSize,
        maxPerWallet=maxPerWallet,
        maxTotal=maxTotal,
        sort=sort,
    )
    return await _list_nfts(params, resolver, aggregator)


@api_router.post("/nfts", response_model=NFTListResponse, responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse}})
async def post_nfts(
    request: NFTsRequest,
    resolver=Depends(get_resolver),
    aggregator=Depends(get_aggregator),
):
    return await _list_nfts(request, resolver, aggregator)


@api_router.get("/portfolio-nfts", response_model=NFTPageResponse, responses=ERROR_RESPONSES)
async def get_portfolio_nfts(
    addresses: Optional[List[str]] = Query(None),
    cursor: Optional[str] = Query(None),
    pageSize: int = Query(50, ge=1, le=100),
    zapper=Depends(get_zapper),
):
    """One page of portfolio NFTs across every chain the portfolio provider indexes."""
    owners = [_require_address(a, "addresses") for a in _split_list(addresses)]
    if not owners:
        raise InvalidArgumentError("addresses is required")
    if not zapper.enabled:
        raise ConfigError()
    nodes, next_cursor = await zapper.user_nft_tokens(list(dict.fromkeys(owners)), cursor, pageSize)
    nfts = [normalize(node) for node in nodes]
    return NFTPageResponse(nfts=[n.to_dict() for n in nfts if n is not None], cursor=next_cursor)


@api_router.get(
    "/nft-metadata",
    response_model=NFTMetadataResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse}},
)
async def get_nft_metadata(
    contractAddress: Optional[str] = Query(None),
    tokenId: Optional[str] = Query(None),
    network: str = Query("eth"),
    alchemy=Depends(get_alchemy),
):
    contract = _require_address(contractAddress, "contractAddress")
    if not tokenId or not tokenId.strip():
        raise InvalidArgumentError("tokenId is required")
    chain = Chain.parse(network)
    raw = await alchemy.nft_metadata(chain, contract, tokenId.strip())
    nft = normalize(raw, chain)
    if nft is None:
        raise NotFoundError(f"No metadata for {contract} #{tokenId}")
    return NFTMetadataResponse(nft=nft.to_dict())


@api_router.get("/spam-contracts", response_model=SpamContractsResponse, responses=ERROR_RESPONSES)
async def get_spam_contracts(network: str = Query("eth"), alchemy=Depends(get_alchemy)):
    chain = Chain.parse(network)
    contracts = await alchemy.spam_contracts(chain)
    return SpamContractsResponse(network=chain.value, count=len(contracts), contractAddresses=contracts)


@api_router.get("/check-spam", response_model=SpamCheckResponse, responses=ERROR_RESPONSES)
async def check_spam(
    contracts: Optional[List[str]] = Query(None),
    network: str = Query("eth"),
    alchemy=Depends(get_alchemy),
):
    """Built-in blocklist first, then the provider's spam index."""
    chain = Chain.parse(network)
    requested = [_require_address(c, "contracts") for c in _split_list(contracts)]
    if not requested:
        raise InvalidArgumentError("contracts is required")
    results = []
    for contract in dict.fromkeys(requested):
        flagged = is_blocklisted(contract) or await alchemy.is_spam_contract(chain, contract)
        results.append({"contractAddress": contract, "isSpam": flagged})
    return SpamCheckResponse(network=chain.value, results=results)


@api_router.get("/media", response_class=Response, summary="Media proxy (always 200)")
async def get_media(url: Optional[str] = Query(None), proxy=Depends(get_media_proxy)):
    media = await proxy.fetch(url)
    headers = {
        "Cache-Control": f"public, max-age={media.cache_seconds}",
        "X-Media-Source": media.source_status,
    }
    if media.filename:
        headers["Content-Disposition"] = content_disposition(media.filename)
    return Response(content=media.body, media_type=media.content_type, headers=headers, status_code=200)


@api_router.post("/rpc/optimism", summary="Optimism JSON-RPC pass-through")
async def optimism_rpc(request: Request, rpc=Depends(get_rpc)):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content=rpc_error(None, "request body is not valid JSON"))
    status, payload = await rpc.forward_or_error(Chain.OPTIMISM, body)
    return JSONResponse(status_code=status, content=payload)


@api_router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        cache={"identity": identity_cache.stats(), "nftPage": nft_page_cache.stats()},
    )
