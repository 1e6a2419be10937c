"""
Tests for the signed state carrier.
"""

import time

import jwt
import pytest

from oauthkeeper.oauth.exceptions import InvalidRequestError
from oauthkeeper.oauth.state import StateSigner


REQUEST = {"client_id": "clientAll", "redirect_uri": "http://localhost:3000/test1", "state": "xyz"}


def forge(claims, key="k", algorithm="HS256"):
    return jwt.encode(claims, key, algorithm=algorithm)


class TestStateSigner:
    """Test suite for StateSigner."""

    def test_round_trip(self):
        signer = StateSigner("k")
        assert signer.loads(signer.dumps(REQUEST)) == REQUEST

    def test_carrier_is_url_safe(self):
        carrier = StateSigner("k").dumps(REQUEST)
        assert all(c.isalnum() or c in "-_." for c in carrier)

    def test_carrier_lifetime_claims(self):
        carrier = StateSigner("k", max_age=120).dumps(REQUEST)
        claims = jwt.decode(carrier, "k", algorithms=["HS256"])
        assert claims["exp"] - claims["iat"] == 120

    def test_shared_secret_across_signers(self):
        """Workers sharing a secret accept each other's carriers."""
        assert StateSigner("shared").loads(StateSigner("shared").dumps(REQUEST)) == REQUEST

    def test_other_key_rejected(self):
        with pytest.raises(InvalidRequestError, match="Invalid state"):
            StateSigner("other").loads(StateSigner("k").dumps(REQUEST))

    def test_random_key_when_unset(self):
        with pytest.raises(InvalidRequestError):
            StateSigner().loads(StateSigner().dumps(REQUEST))

    def test_tampered_payload_rejected(self):
        signer = StateSigner("k")
        header, _, signature = signer.dumps(REQUEST).split(".")
        now = int(time.time())
        _, payload, _ = forge({"d": {**REQUEST, "user_id": "admin"}, "iat": now, "exp": now + 60}).split(".")

        with pytest.raises(InvalidRequestError, match="Invalid state"):
            signer.loads(f"{header}.{payload}.{signature}")

    @pytest.mark.parametrize("carrier", [None, "", "no-dot", "a.b.c", "abc.éé", "é.é.é"])
    def test_malformed_rejected(self, carrier):
        with pytest.raises(InvalidRequestError, match="Invalid state"):
            StateSigner("k").loads(carrier)

    def test_unsigned_carrier_rejected(self):
        now = int(time.time())
        carrier = forge({"d": REQUEST, "iat": now, "exp": now + 60}, key=None, algorithm="none")
        with pytest.raises(InvalidRequestError, match="Invalid state"):
            StateSigner("k").loads(carrier)

    def test_stale_carrier_rejected(self):
        now = int(time.time())
        carrier = forge({"d": REQUEST, "iat": now - 700, "exp": now - 100})
        with pytest.raises(InvalidRequestError, match="State expired"):
            StateSigner("k").loads(carrier)

    def test_carrier_within_lifetime(self):
        now = int(time.time())
        carrier = forge({"d": REQUEST, "iat": now - 30, "exp": now + 570})
        assert StateSigner("k").loads(carrier) == REQUEST

    def test_carrier_without_expiry_rejected(self):
        carrier = forge({"d": REQUEST, "iat": int(time.time())})
        with pytest.raises(InvalidRequestError, match="Invalid state"):
            StateSigner("k").loads(carrier)

    def test_carrier_without_request_rejected(self):
        now = int(time.time())
        carrier = forge({"d": "not a request", "iat": now, "exp": now + 60})
        with pytest.raises(InvalidRequestError, match="Invalid state"):
            StateSigner("k").loads(carrier)
