"""
HMAC-SHA256 request signing shared by the OKX and KuCoin clients.
"""

import base64
import hashlib
import hmac


class SignatureProvider:
    """
    Computes venue request signatures from an API secret.

    Both venues sign ``timestamp + METHOD + path + body`` with HMAC-SHA256 and
    send the base64 digest. KuCoin (key version 2) additionally signs the
    passphrase with the same secret.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("API secret is required for signing")
        self._secret = secret.encode()

    def __repr__(self) -> str:
        return "SignatureProvider(secret=***)"

    def _digest(self, message: str) -> str:
        signature = hmac.new(self._secret, message.encode(), hashlib.sha256).digest()
        return base64.b64encode(signature).decode()

    def sign(self, timestamp: str, method: str, path: str, body: str = "") -> str:
        """
        Sign one request.

        Args:
            timestamp: Venue-format timestamp sent in the request headers
            method: HTTP method, upper-cased before signing
            path: Request path including the query string
            body: Exact serialized body sent on the wire ("" for GET)
        """
        return self._digest(timestamp + method.upper() + path + body)

    def sign_passphrase(self, passphrase: str) -> str:
        """Encode a passphrase for KuCoin key version 2."""
        return self._digest(passphrase)
