"""
otpauth/services/identity_service.py

Purpose: Identity reconciliation

- Maps a verified phone number onto the directory's existing identity
- Reactivates deactivated identities on login (logged, never silent)
- Explicit registration step for phone numbers with no identity
- Profile updates and deactivation for the signed-in identity
"""

from typing import Any, Dict, Optional

from otpauth.core.exceptions import IdentityNotFoundError, ValidationError
from otpauth.core.logging import get_logger, LogContext
from otpauth.models.identity import Identity, IdentityResolution
from otpauth.services.user_directory import UserDirectory
from otpauth.utils.validation_utils import generate_keywords, is_e164, sanitize_input

logger = get_logger(__name__)

MAX_DISPLAY_NAME_LENGTH = 80


def clean_display_name(display_name: str) -> str:
    name = sanitize_input(display_name or "", max_length=MAX_DISPLAY_NAME_LENGTH)
    if len(name) < 2:
        raise ValidationError("Display name must be at least 2 characters")
    return name


class IdentityReconciliationService:
    def __init__(self, directory: UserDirectory):
        self.directory = directory

    async def resolve_identity(self, phone_number: str) -> IdentityResolution:
        """
        Looks up the identity for an already verified, canonical phone number.

        Never allocates an id: a missing record means registration is still
        to come.

        Args:
            phone_number: Canonical E.164 phone number

        Returns:
            IdentityResolution
        """
        if not is_e164(phone_number):
            raise ValidationError("Phone number must be canonical E.164", details={"field": "phone_number"})

        with LogContext(phone=phone_number):
            identity = await self.directory.lookup_by_phone_number(phone_number)
            if identity is None:
                logger.info("No identity for verified phone number, registration pending")
                return IdentityResolution(exists=False)

            reactivated = False
            if identity.deactivated:
                identity = await self.directory.set_deactivated(identity.identity_id, False)
                reactivated = True
                logger.warning(f"Identity {identity.identity_id} reactivated by login")

            return IdentityResolution(
                exists=True,
                identity_id=identity.identity_id,
                reactivated=reactivated,
            )

    async def register_identity(
        self,
        phone_number: str,
        display_name: str,
        profile_fields: Optional[Dict[str, Any]] = None,
    ) -> Identity:
        """
        Creates the identity for a phone number that has none.

        Raises:
            DuplicateIdentityError: the number already has an identity
            ValidationError: bad phone number or display name
        """
        if not is_e164(phone_number):
            raise ValidationError("Phone number must be canonical E.164", details={"field": "phone_number"})

        name = clean_display_name(display_name)
        with LogContext(phone=phone_number):
            identity = await self.directory.create_identity(
                phone_number,
                name,
                profile_fields=clean_profile(profile_fields),
                keywords=generate_keywords(name),
            )
            logger.info(f"Registered identity {identity.identity_id}")
            return identity

    async def get_identity(self, identity_id: str) -> Identity:
        identity = await self.directory.get_identity(identity_id)
        if identity is None:
            raise IdentityNotFoundError(details={"identity_id": identity_id})
        return identity

    async def update_profile(
        self,
        identity_id: str,
        display_name: Optional[str] = None,
        profile_fields: Optional[Dict[str, Any]] = None,
    ) -> Identity:
        """
        Updates the display name and/or merges profile fields. The phone
        number is not part of the profile and cannot change here.
        """
        current = await self.get_identity(identity_id)

        fields: Dict[str, Any] = {}
        if display_name is not None:
            name = clean_display_name(display_name)
            fields["display_name"] = name
            fields["keywords"] = generate_keywords(name)
        if profile_fields:
            fields["profile"] = {**current.profile, **clean_profile(profile_fields)}

        if not fields:
            return current

        identity = await self.directory.update_identity(identity_id, fields)
        logger.info(f"Profile updated for {identity_id}: {sorted(fields)}")
        return identity

    async def deactivate(self, identity_id: str) -> Identity:
        await self.get_identity(identity_id)
        identity = await self.directory.set_deactivated(identity_id, True)
        logger.warning(f"Identity {identity_id} deactivated")
        return identity


def clean_profile(profile_fields: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drops keys that belong to the identity itself and sanitizes string values."""
    reserved = {"identity_id", "phone_number", "phoneNumber", "deactivated", "_id"}
    cleaned = {}
    for key, value in (profile_fields or {}).items():
        if key in reserved:
            continue
        cleaned[key] = sanitize_input(value, max_length=500) if isinstance(value, str) else value
    return cleaned
