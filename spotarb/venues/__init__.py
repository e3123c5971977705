"""
Spot venue integrations (OKX, KuCoin).
"""

from spotarb.venues.base import BaseVenueClient
from spotarb.venues.errors import ErrorClassifier
from spotarb.venues.kucoin import KuCoinClient
from spotarb.venues.okx import OKXClient
from spotarb.venues.signing import SignatureProvider

__all__ = [
    "BaseVenueClient",
    "ErrorClassifier",
    "KuCoinClient",
    "OKXClient",
    "SignatureProvider",
]
