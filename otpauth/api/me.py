"""
otpauth/api/me.py

Purpose: Endpoints for the signed-in identity

- Read and update the profile
- Deactivate the account (the next login reactivates it)
"""

from fastapi import APIRouter, Depends

from otpauth.api.deps import get_container, get_principal
from otpauth.core.container import ServiceContainer
from otpauth.models.identity import Identity
from otpauth.schemas.auth import IdentityResponse, SuccessResponse, UpdateProfileRequest
from otpauth.services.token_service import CredentialClaims

router = APIRouter(prefix="/me", tags=["me"])


def to_response(identity: Identity) -> IdentityResponse:
    return IdentityResponse(
        identity_id=identity.identity_id,
        phone_number=identity.phone_number,
        display_name=identity.display_name,
        deactivated=identity.deactivated,
        created_at=identity.created_at,
        updated_at=identity.updated_at,
        reactivated_at=identity.reactivated_at,
        profile=identity.profile,
    )


@router.get("", response_model=IdentityResponse)
async def get_me(
    principal: CredentialClaims = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    identity = await container.identities.get_identity(principal.identity_id)
    return to_response(identity)


@router.patch("", response_model=IdentityResponse)
async def update_me(
    payload: UpdateProfileRequest,
    principal: CredentialClaims = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    identity = await container.identities.update_profile(
        principal.identity_id,
        display_name=payload.display_name,
        profile_fields=payload.profile,
    )
    return to_response(identity)


@router.post("/deactivate", response_model=SuccessResponse)
async def deactivate_me(
    principal: CredentialClaims = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    await container.identities.deactivate(principal.identity_id)
    return SuccessResponse()
