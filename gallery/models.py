# models.py
"""
Pydantic schemas for the HTTP surface.

Field names are camelCase because that is what the gallery front-end reads.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel


# ============================================================================
# REQUEST MODELS
# ============================================================================

class NFTsRequest(BaseModel):
    """Body of POST /nfts; mirrors the GET query parameters."""
    address: Optional[str] = None
    addresses: Optional[Union[List[str], str]] = None
    username: Optional[str] = None
    fid: Optional[int] = None
    chains: Optional[Union[List[str], str]] = None
    excludeSpam: bool = True
    excludeAirdrops: bool = True
    aggressiveSpam: bool = False
    pageSize: int = 100
    maxPerWallet: Optional[int] = None
    maxTotal: Optional[int] = None
    sort: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "addresses": ["0xd8da6bf26964af9d7eed9e03e53415d37aa96045"],
                "chains": ["eth", "base"],
                "excludeSpam": True,
                "pageSize": 100,
                "sort": "recent",
            }
        }


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class ErrorResponse(BaseModel):
    """Error response model"""
    error: str
    message: str


class IdentityResponse(BaseModel):
    fid: int
    username: str
    displayName: Optional[str] = None
    avatarUrl: Optional[str] = None
    custodyAddress: Optional[str] = None
    connectedAddresses: List[str] = []
    bio: Optional[str] = None
    followerCount: Optional[int] = None
    followingCount: Optional[int] = None


class ProfileResponse(BaseModel):
    profile: IdentityResponse

    class Config:
        json_schema_extra = {
            "example": {
                "profile": {
                    "fid": 3,
                    "username": "dwr",
                    "displayName": "Dan Romero",
                    "custodyAddress": "0x6b0bda3f2ffed5efc83fa8c024acff1dd45793f1",
                    "connectedAddresses": ["0xd7029bdea1c17493893aafe29aad69ef892b8ff2"],
                }
            }
        }


class SearchResponse(BaseModel):
    users: List[IdentityResponse]


class FriendResponse(BaseModel):
    fid: int
    username: str
    displayName: Optional[str] = None
    avatarUrl: Optional[str] = None
    address: str


class CollectionFriendsResponse(BaseModel):
    contractAddress: str
    friends: List[FriendResponse]
    totalFriends: int
    hasMore: bool


class CollectionInfo(BaseModel):
    address: Optional[str] = None
    name: Optional[str] = None
    floorPriceEth: Optional[float] = None
    floorPriceUsd: Optional[float] = None


class MediaInfo(BaseModel):
    url: Optional[str] = None
    mimeType: Optional[str] = None


class NFTResponse(BaseModel):
    """One canonical NFT record"""
    fingerprint: str
    chain: str
    contractAddress: str
    tokenId: str
    name: Optional[str] = None
    collection: CollectionInfo
    media: MediaInfo
    ownerAddress: Optional[str] = None
    transferTimestamp: Optional[datetime] = None
    spamSignals: List[str] = []


class WarningResponse(BaseModel):
    address: str
    chain: Optional[str] = None
    kind: str
    detail: str


class NFTListResponse(BaseModel):
    """Aggregated NFTs across wallets and chains"""
    nfts: List[NFTResponse]
    totalCount: int
    perWallet: Dict[str, int]
    warnings: List[WarningResponse]
    addresses: List[str]
    profile: Optional[IdentityResponse] = None


class NFTPageResponse(BaseModel):
    nfts: List[NFTResponse]
    cursor: Optional[str] = None


class NFTMetadataResponse(BaseModel):
    nft: NFTResponse


class SpamContractsResponse(BaseModel):
    network: str
    count: int
    contractAddresses: List[str]


class SpamCheckResult(BaseModel):
    contractAddress: str
    isSpam: bool


class SpamCheckResponse(BaseModel):
    network: str
    results: List[SpamCheckResult]


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    timestamp: datetime
    version: str
    cache: Dict[str, Any]
