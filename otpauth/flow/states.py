"""
otpauth/flow/states.py

Purpose: Defines the authentication states

- ANONYMOUS, PENDING_REGISTRATION, AUTHENTICATED
- Single source of truth for the login state machine
- State transition validation
- Metadata for each state
"""

from enum import Enum
from typing import Dict, List
from dataclasses import dataclass


class AuthState(str, Enum):
    """
    States a phone number moves through during login.
    """

    # No verified phone number yet
    ANONYMOUS = "ANONYMOUS"

    # OTP verified, no directory record; waiting for registration details
    PENDING_REGISTRATION = "PENDING_REGISTRATION"

    # Bound to a directory identity and holding a credential
    AUTHENTICATED = "AUTHENTICATED"


@dataclass
class StateMetadata:
    """
    Metadata associated with each authentication state.
    """
    name: AuthState
    display_name: str
    issues_credential: bool = False  # Whether reaching this state mints a credential
    requires_user_input: bool = True
    description: str = ""


STATE_METADATA: Dict[AuthState, StateMetadata] = {
    AuthState.ANONYMOUS: StateMetadata(
        name=AuthState.ANONYMOUS,
        display_name="Signed out",
        description="Phone number not yet verified"
    ),
    AuthState.PENDING_REGISTRATION: StateMetadata(
        name=AuthState.PENDING_REGISTRATION,
        display_name="Complete your profile",
        description="Verified phone number with no identity; holds a registration ticket"
    ),
    AuthState.AUTHENTICATED: StateMetadata(
        name=AuthState.AUTHENTICATED,
        display_name="Signed in",
        issues_credential=True,
        requires_user_input=False,
        description="Credential minted for a directory identity"
    ),
}


STATE_TRANSITIONS: Dict[AuthState, List[AuthState]] = {
    AuthState.ANONYMOUS: [
        AuthState.PENDING_REGISTRATION,  # OTP verified, no directory record
        AuthState.AUTHENTICATED,  # OTP verified, record found
        AuthState.ANONYMOUS,  # Failed verification
    ],
    AuthState.PENDING_REGISTRATION: [
        AuthState.AUTHENTICATED,  # Profile created
        AuthState.ANONYMOUS,  # Ticket expired
    ],
    AuthState.AUTHENTICATED: [
        AuthState.AUTHENTICATED,  # Login again, reactivation, refresh
        AuthState.ANONYMOUS,  # Credential expired
    ],
}


def is_valid_transition(from_state: AuthState, to_state: AuthState) -> bool:
    """
    Checks if a state transition is valid.

    Args:
        from_state: Current state
        to_state: Target state

    Returns:
        True if transition is allowed, False otherwise
    """
    return to_state in STATE_TRANSITIONS.get(from_state, [])


def get_state_metadata(state: AuthState) -> StateMetadata:
    return STATE_METADATA.get(state, StateMetadata(
        name=state,
        display_name=state.value,
        description="Unknown state"
    ))
