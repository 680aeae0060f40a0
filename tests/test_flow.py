import re

import pytest

from otpauth.core.exceptions import DuplicateIdentityError, ErrorKind, InvalidCredentialError
from otpauth.flow.dispatcher import AuthFlow
from otpauth.flow.states import AuthState, STATE_TRANSITIONS, get_state_metadata, is_valid_transition
from otpauth.models.identity import Identity
from otpauth.services.identity_service import IdentityReconciliationService
from otpauth.services.otp_service import OtpSessionManager
from otpauth.services.token_service import TokenService
from otpauth.services.user_directory import InMemoryUserDirectory

NEW_PHONE = "+15551234567"
KNOWN_PHONE = "+15559876543"


@pytest.fixture
def directory(clock):
    directory = InMemoryUserDirectory(clock=clock)
    directory.seed(Identity(identity_id="idr_77", phone_number=KNOWN_PHONE, display_name="Known User"))
    return directory


@pytest.fixture
def tokens(config, clock):
    return TokenService(config=config, clock=clock)


@pytest.fixture
def flow(kv, gateway, config, clock, directory, tokens):
    otp = OtpSessionManager(kv, gateway, config=config, clock=clock)
    return AuthFlow(otp, IdentityReconciliationService(directory), tokens)


async def code_for(flow, sms, phone):
    assert (await flow.request_code(phone)).success
    return re.search(r"\b(\d{6})\b", sms.last_message_to(phone)).group(1)


def test_transitions():
    assert is_valid_transition(AuthState.ANONYMOUS, AuthState.PENDING_REGISTRATION)
    assert is_valid_transition(AuthState.ANONYMOUS, AuthState.AUTHENTICATED)
    assert is_valid_transition(AuthState.PENDING_REGISTRATION, AuthState.AUTHENTICATED)
    assert is_valid_transition(AuthState.AUTHENTICATED, AuthState.AUTHENTICATED)
    assert not is_valid_transition(AuthState.AUTHENTICATED, AuthState.PENDING_REGISTRATION)
    assert set(STATE_TRANSITIONS) == set(AuthState)


def test_only_authenticated_issues_credentials():
    assert get_state_metadata(AuthState.AUTHENTICATED).issues_credential
    assert not get_state_metadata(AuthState.PENDING_REGISTRATION).issues_credential


@pytest.mark.anyio
async def test_returning_user_is_authenticated_with_directory_id(flow, sms, tokens):
    code = await code_for(flow, sms, KNOWN_PHONE)

    outcome = await flow.verify_and_login(KNOWN_PHONE, code)

    assert outcome.success
    assert outcome.state == AuthState.AUTHENTICATED
    assert outcome.identity_id == "idr_77"
    assert outcome.registration_token is None
    assert tokens.validate(outcome.credential).identity_id == "idr_77"


@pytest.mark.anyio
async def test_new_user_goes_through_pending_registration(flow, sms, tokens, directory):
    code = await code_for(flow, sms, NEW_PHONE)

    pending = await flow.verify_and_login(NEW_PHONE, code)

    assert pending.state == AuthState.PENDING_REGISTRATION
    assert not pending.identity_exists
    assert pending.credential is None
    assert pending.identity_id is None
    assert await directory.lookup_by_phone_number(NEW_PHONE) is None

    registered = await flow.complete_registration(pending.registration_token, "Asha Rao")

    assert registered.state == AuthState.AUTHENTICATED
    assert tokens.validate(registered.credential).identity_id == registered.identity_id
    assert (await directory.lookup_by_phone_number(NEW_PHONE)).identity_id == registered.identity_id


@pytest.mark.anyio
async def test_failed_verification_stays_anonymous(flow, sms):
    await code_for(flow, sms, NEW_PHONE)

    outcome = await flow.verify_and_login(NEW_PHONE, "not-it")

    assert not outcome.success
    assert outcome.state == AuthState.ANONYMOUS
    assert outcome.otp_result.error_kind == ErrorKind.INVALID_CODE


@pytest.mark.anyio
async def test_ticket_cannot_be_used_twice(flow, sms):
    code = await code_for(flow, sms, NEW_PHONE)
    pending = await flow.verify_and_login(NEW_PHONE, code)
    await flow.complete_registration(pending.registration_token, "Asha Rao")

    with pytest.raises(DuplicateIdentityError):
        await flow.complete_registration(pending.registration_token, "Asha Again")


@pytest.mark.anyio
async def test_registration_needs_a_ticket(flow):
    with pytest.raises(InvalidCredentialError):
        await flow.complete_registration("forged", "Asha Rao")


@pytest.mark.anyio
async def test_refresh_keeps_subject(flow, tokens):
    credential = tokens.mint("idr_77", KNOWN_PHONE)

    refreshed = await flow.refresh(credential)

    assert tokens.validate(refreshed).identity_id == "idr_77"
