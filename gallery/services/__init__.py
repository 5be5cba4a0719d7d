"""
Upstream clients
Narrow async clients for the NFT index, social graph, portfolio GraphQL and JSON-RPC providers
"""

from .base_client import BaseAPIClient
from .alchemy_service import AlchemyService, flatten_owners
from .neynar_service import NeynarService, identity_from_user, user_addresses
from .zapper_service import ZapperService, identity_from_profile
from .rpc_service import RPCService, rpc_error

__all__ = [
    'BaseAPIClient',
    'AlchemyService',
    'flatten_owners',
    'NeynarService',
    'identity_from_user',
    'user_addresses',
    'ZapperService',
    'identity_from_profile',
    'RPCService',
    'rpc_error',
]
