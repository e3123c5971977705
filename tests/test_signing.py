"""
Tests for request signing.
"""

import pytest

from spotarb.venues.signing import SignatureProvider


class TestSignatureProvider:
    """Tests for SignatureProvider."""

    def test_sign_known_vector(self):
        signer = SignatureProvider("okx-secret")
        signature = signer.sign(
            "2024-01-01T00:00:00.000Z", "POST", "/api/v5/trade/order", '{"instId":"DOGE-USDT"}'
        )
        assert signature == "7rFMsBgnoJ3ueaQ3xSs+rRkNwNdgGPX2McE7fEt4L10="

    def test_method_is_upper_cased(self):
        signer = SignatureProvider("kc-secret")
        path = "/api/v1/accounts?currency=USDT&type=trade"
        expected = "jWDo2Tw8x4KuxOAWCBwaPlPRsY9UNIyY3DcRzMlKlzE="
        assert signer.sign("1700000000000", "GET", path) == expected
        assert signer.sign("1700000000000", "get", path) == expected

    def test_sign_passphrase(self):
        signer = SignatureProvider("kc-secret")
        assert signer.sign_passphrase("kc-pass") == "f9Ft/4TxlSc3VzwCoVWeOIe3NarHq35v1eTRN3FrQj4="

    def test_deterministic(self):
        signer = SignatureProvider("s")
        assert signer.sign("1", "GET", "/a", "") == signer.sign("1", "GET", "/a", "")

    def test_body_changes_signature(self):
        signer = SignatureProvider("s")
        assert signer.sign("1", "POST", "/a", "{}") != signer.sign("1", "POST", "/a", '{"x":1}')

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            SignatureProvider("")

    def test_repr_hides_secret(self):
        assert "okx-secret" not in repr(SignatureProvider("okx-secret"))
