"""
otpauth/services/user_directory.py

Purpose: User directory (durable identity store)

- lookup by canonical phone number, create, update, deactivate
- identity ids are allocated here and nowhere else
- phone number uniqueness is enforced by the store itself
"""

import asyncio
import uuid
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from otpauth.core.exceptions import DuplicateIdentityError, IdentityNotFoundError
from otpauth.db.mongo import check_database_health
from otpauth.core.logging import get_logger, mask_phone
from otpauth.models.identity import Identity
from otpauth.utils.time_utils import Clock, utc_now

logger = get_logger(__name__)

# Fields a caller may change through update_identity
MUTABLE_FIELDS = {"display_name", "profile", "keywords"}


def new_identity_id() -> str:
    return f"idr_{uuid.uuid4().hex}"


class UserDirectory:
    """Lookup/create/update contract for identities."""

    async def lookup_by_phone_number(self, phone_number: str) -> Optional[Identity]:
        raise NotImplementedError()

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        raise NotImplementedError()

    async def create_identity(
        self,
        phone_number: str,
        display_name: str,
        profile_fields: Optional[Dict[str, Any]] = None,
        keywords: Optional[list] = None,
    ) -> Identity:
        raise NotImplementedError()

    async def update_identity(self, identity_id: str, fields: Dict[str, Any]) -> Identity:
        raise NotImplementedError()

    async def set_deactivated(self, identity_id: str, deactivated: bool) -> Identity:
        raise NotImplementedError()

    async def ping(self) -> bool:
        return True


def _checked_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    return fields


class InMemoryUserDirectory(UserDirectory):
    """
    Process-local directory for tests and local development.

    Check-and-insert runs under one lock, which gives the same guarantee as
    the unique index in Mongo.
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._by_id: Dict[str, Identity] = {}
        self._id_by_phone: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def lookup_by_phone_number(self, phone_number: str) -> Optional[Identity]:
        identity_id = self._id_by_phone.get(phone_number)
        if identity_id is None:
            return None
        return self._by_id[identity_id].model_copy(deep=True)

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        identity = self._by_id.get(identity_id)
        return identity.model_copy(deep=True) if identity else None

    async def create_identity(self, phone_number, display_name, profile_fields=None, keywords=None) -> Identity:
        async with self._lock:
            if phone_number in self._id_by_phone:
                raise DuplicateIdentityError(
                    details={"phone": mask_phone(phone_number), "existing_identity_id": self._id_by_phone[phone_number]}
                )
            identity = Identity(
                identity_id=new_identity_id(),
                phone_number=phone_number,
                display_name=display_name,
                created_at=self._clock(),
                profile=dict(profile_fields or {}),
                keywords=list(keywords or []),
            )
            self._by_id[identity.identity_id] = identity
            self._id_by_phone[phone_number] = identity.identity_id
            return identity.model_copy(deep=True)

    def seed(self, identity: Identity) -> Identity:
        """Inserts a fully formed identity (fixtures and imports)."""
        if identity.phone_number in self._id_by_phone or identity.identity_id in self._by_id:
            raise DuplicateIdentityError(details={"identity_id": identity.identity_id})
        self._by_id[identity.identity_id] = identity
        self._id_by_phone[identity.phone_number] = identity.identity_id
        return identity

    async def update_identity(self, identity_id: str, fields: Dict[str, Any]) -> Identity:
        fields = _checked_fields(fields)
        async with self._lock:
            identity = self._by_id.get(identity_id)
            if identity is None:
                raise IdentityNotFoundError(details={"identity_id": identity_id})
            updated = identity.model_copy(update={**fields, "updated_at": self._clock()})
            self._by_id[identity_id] = updated
            return updated.model_copy(deep=True)

    async def set_deactivated(self, identity_id: str, deactivated: bool) -> Identity:
        async with self._lock:
            identity = self._by_id.get(identity_id)
            if identity is None:
                raise IdentityNotFoundError(details={"identity_id": identity_id})
            now = self._clock()
            changes = {"deactivated": deactivated, "updated_at": now}
            changes["deactivated_at" if deactivated else "reactivated_at"] = now
            updated = identity.model_copy(update=changes)
            self._by_id[identity_id] = updated
            return updated.model_copy(deep=True)


class MongoUserDirectory(UserDirectory):
    """
    Directory backed by the identities collection. Relies on the unique
    index on phone_number created in otpauth.db.indexes.
    """

    def __init__(self, collection, clock: Clock = utc_now):
        self.collection = collection
        self._clock = clock

    async def lookup_by_phone_number(self, phone_number: str) -> Optional[Identity]:
        document = await self.collection.find_one({"phone_number": phone_number})
        return Identity.from_document(document) if document else None

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        document = await self.collection.find_one({"identity_id": identity_id})
        return Identity.from_document(document) if document else None

    async def create_identity(self, phone_number, display_name, profile_fields=None, keywords=None) -> Identity:
        identity = Identity(
            identity_id=new_identity_id(),
            phone_number=phone_number,
            display_name=display_name,
            created_at=self._clock(),
            profile=dict(profile_fields or {}),
            keywords=list(keywords or []),
        )
        try:
            await self.collection.insert_one(identity.to_document())
        except DuplicateKeyError as e:
            raise DuplicateIdentityError(
                details={"phone": mask_phone(phone_number), "mongo_error": str(e.details or e)}
            ) from e

        logger.info(f"Identity {identity.identity_id} created")
        return identity

    async def update_identity(self, identity_id: str, fields: Dict[str, Any]) -> Identity:
        fields = _checked_fields(fields)
        document = await self.collection.find_one_and_update(
            {"identity_id": identity_id},
            {"$set": {**fields, "updated_at": self._clock()}},
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            raise IdentityNotFoundError(details={"identity_id": identity_id})
        return Identity.from_document(document)

    async def set_deactivated(self, identity_id: str, deactivated: bool) -> Identity:
        now = self._clock()
        changes = {"deactivated": deactivated, "updated_at": now}
        changes["deactivated_at" if deactivated else "reactivated_at"] = now
        document = await self.collection.find_one_and_update(
            {"identity_id": identity_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            raise IdentityNotFoundError(details={"identity_id": identity_id})
        return Identity.from_document(document)

    async def ping(self) -> bool:
        return await check_database_health()
