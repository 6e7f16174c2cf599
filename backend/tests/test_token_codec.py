from datetime import timedelta

import pytest

from sessionkeeper.services.errors import InvalidTokenError
from sessionkeeper.services.token_codec import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenCodec,
    hash_token,
)
from sessionkeeper.timeutil import epoch_seconds, utcnow

SECRET = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"


@pytest.fixture
def codec():
    return TokenCodec(SECRET)


def test_issue_is_deterministic_for_same_inputs(codec):
    now = utcnow()
    first = codec.issue_access_token("user-1", "a@x.com", "session-1", timedelta(minutes=5), now=now)
    second = codec.issue_access_token("user-1", "a@x.com", "session-1", timedelta(minutes=5), now=now)
    assert first == second


def test_verify_returns_claims(codec):
    now = utcnow()
    token = codec.issue_refresh_token("user-1", "a@x.com", "session-1", timedelta(hours=1), now=now)

    claims = codec.verify(token, REFRESH_TOKEN_TYPE)

    assert claims.subject_id == "user-1"
    assert claims.email == "a@x.com"
    assert claims.session_id == "session-1"
    assert claims.token_type == REFRESH_TOKEN_TYPE
    assert claims.issued_at == epoch_seconds(now)
    assert claims.expires_at == epoch_seconds(now) + 3600


def test_wrong_token_type_is_rejected(codec):
    token = codec.issue_refresh_token("user-1", "a@x.com", "session-1", timedelta(hours=1))

    with pytest.raises(InvalidTokenError):
        codec.verify(token, ACCESS_TOKEN_TYPE)


def test_tampered_token_is_rejected(codec):
    token = codec.issue_access_token("user-1", "a@x.com", "session-1", timedelta(hours=1))
    header, payload, signature = token.split(".")
    tampered = ".".join([header, payload, signature[::-1]])

    with pytest.raises(InvalidTokenError):
        codec.verify(tampered, ACCESS_TOKEN_TYPE)


def test_token_signed_with_other_secret_is_rejected(codec):
    other = TokenCodec("fedcba9876543210" * 4)
    token = other.issue_access_token("user-1", "a@x.com", "session-1", timedelta(hours=1))

    with pytest.raises(InvalidTokenError):
        codec.verify(token, ACCESS_TOKEN_TYPE)


def test_expired_token_is_rejected(codec):
    issued = utcnow() - timedelta(hours=2)
    token = codec.issue_access_token("user-1", "a@x.com", "session-1", timedelta(hours=1), now=issued)

    with pytest.raises(InvalidTokenError):
        codec.verify(token, ACCESS_TOKEN_TYPE)


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_malformed_tokens_are_rejected(codec, token):
    with pytest.raises(InvalidTokenError):
        codec.verify(token, ACCESS_TOKEN_TYPE)


def test_token_without_subject_is_rejected(codec):
    token = codec.issue({"type": ACCESS_TOKEN_TYPE}, timedelta(hours=1))

    with pytest.raises(InvalidTokenError):
        codec.verify(token, ACCESS_TOKEN_TYPE)


def test_session_id_claim_is_optional(codec):
    token = codec.issue({"sub": "user-1", "type": ACCESS_TOKEN_TYPE}, timedelta(hours=1))

    claims = codec.verify(token, ACCESS_TOKEN_TYPE)
    assert claims.session_id is None
    assert claims.email is None


def test_hash_token_is_stable_sha256_hex():
    assert hash_token("abc") == hash_token("abc")
    assert hash_token("abc") != hash_token("abd")
    assert len(hash_token("abc")) == 64
