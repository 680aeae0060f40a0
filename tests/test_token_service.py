import jwt
import pytest

from otpauth.core.exceptions import CredentialMintError, InvalidCredentialError
from otpauth.services.token_service import TokenService


@pytest.fixture
def tokens(config, clock):
    return TokenService(config=config, clock=clock)


def test_minted_subject_is_exactly_the_identity_id(tokens, config):
    credential = tokens.mint("idr_77", "+15559876543")

    payload = jwt.decode(
        credential,
        config.JWT_SECRET,
        algorithms=["HS256"],
        audience=config.JWT_AUDIENCE,
        options={"verify_exp": False, "verify_iat": False},
    )
    assert payload["sub"] == "idr_77"
    assert payload["phone_number"] == "+15559876543"
    assert payload["typ"] == "access"
    assert "iat" in payload


def test_validate_round_trip(tokens, clock):
    claims = tokens.validate(tokens.mint("idr_77", "+15559876543"))

    assert claims.identity_id == "idr_77"
    assert claims.phone_number == "+15559876543"
    assert claims.issued_at == clock()


def test_tampered_credential_is_rejected(tokens):
    credential = tokens.mint("idr_77", "+15559876543")
    header, payload, signature = credential.split(".")
    forged = jwt.encode(
        {"sub": "idr_1", "phone_number": "+15559876543", "typ": "access", "iat": 0, "exp": 9999999999},
        "someone-elses-secret",
        algorithm="HS256",
    )

    with pytest.raises(InvalidCredentialError):
        tokens.validate(forged)
    with pytest.raises(InvalidCredentialError):
        tokens.validate(f"{header}.{payload}.{signature[::-1]}")


def test_expired_credential_is_rejected(tokens, clock, config):
    credential = tokens.mint("idr_77", "+15559876543")
    clock.advance(seconds=config.ACCESS_TOKEN_TTL_SECONDS)

    with pytest.raises(InvalidCredentialError):
        tokens.validate(credential)


def test_refresh_within_grace_window(tokens, clock, config):
    credential = tokens.mint("idr_77", "+15559876543")
    clock.advance(seconds=config.ACCESS_TOKEN_TTL_SECONDS + 60)

    refreshed = tokens.refresh(credential)
    claims = tokens.validate(refreshed)

    assert claims.identity_id == "idr_77"
    assert claims.phone_number == "+15559876543"
    assert claims.issued_at == clock()


def test_refresh_after_grace_window_fails(tokens, clock, config):
    credential = tokens.mint("idr_77", "+15559876543")
    clock.advance(seconds=config.ACCESS_TOKEN_TTL_SECONDS + config.REFRESH_GRACE_SECONDS)

    with pytest.raises(InvalidCredentialError):
        tokens.refresh(credential)


def test_registration_ticket_is_not_an_access_credential(tokens):
    ticket = tokens.mint_registration_ticket("+15551234567")

    assert tokens.validate_registration_ticket(ticket) == "+15551234567"
    with pytest.raises(InvalidCredentialError):
        tokens.validate(ticket)
    with pytest.raises(InvalidCredentialError):
        tokens.validate_registration_ticket(tokens.mint("idr_77", "+15551234567"))


def test_registration_ticket_expires(tokens, clock, config):
    ticket = tokens.mint_registration_ticket("+15551234567")
    clock.advance(seconds=config.REGISTRATION_TOKEN_TTL_SECONDS + 1)

    with pytest.raises(InvalidCredentialError):
        tokens.validate_registration_ticket(ticket)


def test_mint_without_secret_fails(config, clock):
    tokens = TokenService(config=config.model_copy(update={"JWT_SECRET": None}), clock=clock)

    with pytest.raises(CredentialMintError) as excinfo:
        tokens.mint("idr_77", "+15559876543")

    assert excinfo.value.code == "CREDENTIAL_MINT_FAILED"


def test_mint_without_identity_fails(tokens):
    with pytest.raises(CredentialMintError):
        tokens.mint("", "+15559876543")
