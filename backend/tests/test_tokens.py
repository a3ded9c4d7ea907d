from datetime import datetime, timedelta, timezone

import jwt
import pytest

from auth_tokens import (
    MalformedToken,
    SignatureInvalid,
    TokenCodec,
    TokenExpired,
)

SECRET = "codec-secret-0123456789-abcdefghijklmnopqrstu"


@pytest.fixture()
def codec():
    return TokenCodec(SECRET)


class TestIssueAndVerify:
    def test_round_trip_claims(self, codec):
        issued = codec.issue("64b000000000000000000001", "salesman", True)
        identity = codec.verify(issued.token)

        assert identity.account_id == "64b000000000000000000001"
        assert identity.role == "salesman"
        assert identity.is_verified is True
        assert identity.is_blocked is False

    def test_expiry_is_seven_days(self, codec):
        issued = codec.issue("acc-1", "admin", True)
        identity = codec.verify(issued.token)

        assert identity.expires_at - identity.issued_at == timedelta(days=7)
        assert issued.expires_at == identity.expires_at

    def test_blocked_flag_survives(self, codec):
        identity = codec.verify(codec.issue("acc-1", "salesman", True, is_blocked=True).token)
        assert identity.is_blocked is True

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenCodec("")


class TestVerifyFailures:
    def test_expired_token(self, codec):
        past = datetime.now(timezone.utc) - timedelta(days=8)
        stale_codec = TokenCodec(SECRET, clock=lambda: past)
        token = stale_codec.issue("acc-1", "admin", True).token

        with pytest.raises(TokenExpired):
            codec.verify(token)

    def test_signed_with_other_secret(self, codec):
        foreign = TokenCodec("another-secret-0123456789-abcdefghijklmnop")
        token = foreign.issue("acc-1", "admin", True).token

        with pytest.raises(SignatureInvalid):
            codec.verify(token)

    def test_tampered_payload(self, codec):
        header, _, signature = codec.issue("acc-1", "salesman", True).token.split(".")
        forged_payload = jwt.encode(
            {
                "sub": "acc-1",
                "role": "admin",
                "is_verified": True,
                "is_blocked": False,
                "iat": datetime.now(timezone.utc),
                "exp": datetime.now(timezone.utc) + timedelta(days=7),
            },
            "attacker-secret-0123456789-abcdefghijklmnop",
            algorithm="HS256",
        ).split(".")[1]

        with pytest.raises(SignatureInvalid):
            codec.verify(".".join([header, forged_payload, signature]))

    @pytest.mark.parametrize("token", ["", None, "not-a-token", "a.b", "a.b.c"])
    def test_unparseable(self, codec, token):
        with pytest.raises(MalformedToken):
            codec.verify(token)

    def test_missing_role_claim(self, codec):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "acc-1", "iat": now, "exp": now + timedelta(days=1)},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(MalformedToken):
            codec.verify(token)

    def test_non_boolean_flags(self, codec):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "sub": "acc-1",
                "role": "admin",
                "is_verified": "yes",
                "iat": now,
                "exp": now + timedelta(days=1),
            },
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(MalformedToken):
            codec.verify(token)

    def test_failures_are_authentication_failures(self, codec):
        with pytest.raises(MalformedToken) as excinfo:
            codec.verify("garbage")
        assert excinfo.value.status_code == 401
