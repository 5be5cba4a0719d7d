"""
NFT gallery aggregation core: Farcaster identity resolution, multi-chain
NFT aggregation, collection friends and a media proxy.
"""

__version__ = "0.3.0"
