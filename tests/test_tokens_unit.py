"""Unit tests for bearer token signing and verification."""

import base64
import json

import pytest

from eventdesk.service.tokens import InvalidToken, TokenIssuer


def _decode_payload(token: str) -> dict:
    segment = token.split(".")[1]
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return json.loads(base64.urlsafe_b64decode(segment + padding))


@pytest.fixture
def tokens(settings, clock):
    return TokenIssuer(settings, clock=clock)


class TestTokenIssue:
    def test_access_token_payload_has_exactly_sub_roles_exp(self, tokens, clock):
        token = tokens.issue_access("user-1", ["USER", "AGENT"])
        payload = _decode_payload(token)

        assert set(payload) == {"sub", "roles", "exp"}
        assert payload["sub"] == "user-1"
        assert payload["roles"] == ["USER", "AGENT"]
        assert payload["exp"] == int(clock.now.timestamp()) + 15 * 60

    def test_refresh_token_lives_seven_days(self, tokens, clock):
        payload = _decode_payload(tokens.issue_refresh("user-1", ["USER"]))
        assert payload["exp"] == int(clock.now.timestamp()) + 7 * 24 * 3600

    def test_reset_token_carries_type_and_no_roles(self, tokens, clock):
        payload = _decode_payload(tokens.issue_reset("user-1"))

        assert set(payload) == {"sub", "type", "exp"}
        assert payload["type"] == "reset"
        assert payload["exp"] == int(clock.now.timestamp()) + 3600

    def test_header_is_hs256(self, tokens):
        segment = tokens.issue_access("user-1", ["USER"]).split(".")[0]
        header = json.loads(base64.urlsafe_b64decode(segment + "=" * ((4 - len(segment) % 4) % 4)))
        assert header == {"alg": "HS256", "typ": "JWT"}


class TestTokenVerify:
    def test_roundtrip_returns_payload(self, tokens):
        token = tokens.issue_access("user-1", ["USER"])
        assert tokens.verify(token)["sub"] == "user-1"

    def test_expired_token_rejected(self, tokens, clock):
        token = tokens.issue_access("user-1", ["USER"])
        clock.advance(minutes=16)
        with pytest.raises(InvalidToken):
            tokens.verify(token)

    def test_token_rejected_exactly_at_expiry(self, tokens, clock):
        token = tokens.issue_access("user-1", ["USER"])
        clock.advance(minutes=15)
        with pytest.raises(InvalidToken):
            tokens.verify(token)

    def test_token_signed_with_other_secret_rejected(self, tokens, settings, clock):
        other = TokenIssuer(settings.model_copy(update={"jwt_secret": "x" * 48}), clock=clock)
        token = other.issue_access("user-1", ["USER"])
        with pytest.raises(InvalidToken):
            tokens.verify(token)

    def test_tampered_payload_rejected(self, tokens):
        header, _, sig = tokens.issue_access("user-1", ["USER"]).split(".")
        forged = base64.urlsafe_b64encode(
            json.dumps({"sub": "admin", "roles": ["ADMIN"], "exp": 9999999999}).encode()
        ).decode().rstrip("=")
        with pytest.raises(InvalidToken):
            tokens.verify(f"{header}.{forged}.{sig}")

    def test_none_algorithm_rejected(self, tokens):
        _, payload, sig = tokens.issue_access("user-1", ["USER"]).split(".")
        header = base64.urlsafe_b64encode(b'{"alg":"none","typ":"JWT"}').decode().rstrip("=")
        with pytest.raises(InvalidToken):
            tokens.verify(f"{header}.{payload}.{sig}")

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b", "a.b.c.d", "not.a.token"])
    def test_malformed_tokens_rejected(self, tokens, garbage):
        with pytest.raises(InvalidToken):
            tokens.verify(garbage)

    def test_non_string_rejected(self, tokens):
        with pytest.raises(InvalidToken):
            tokens.verify(None)
