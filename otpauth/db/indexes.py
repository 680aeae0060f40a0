"""
otpauth/db/indexes.py

Purpose: Database index management

- Unique indexes that make duplicate identities impossible
- Lookup indexes for search and housekeeping
"""

from otpauth.db.mongo import get_identities_collection
from otpauth.core.logging import get_logger

logger = get_logger(__name__)


async def create_indexes(identities=None):
    """
    Creates the identities indexes.
    This function is idempotent - safe to run multiple times.
    """
    try:
        identities = identities if identities is not None else get_identities_collection()

        logger.info("Creating database indexes...")

        # One identity per phone number; the storage-level guard against
        # two concurrent registrations for the same number
        await identities.create_index("phone_number", unique=True, name="phone_number_unique")
        logger.debug("Created unique index on identities.phone_number")

        await identities.create_index("identity_id", unique=True, name="identity_id_unique")
        logger.debug("Created unique index on identities.identity_id")

        await identities.create_index("keywords", name="keywords_idx")
        logger.debug("Created index on identities.keywords")

        await identities.create_index("deactivated", name="deactivated_idx")
        logger.debug("Created index on identities.deactivated")

        logger.info("✅ All database indexes created successfully")

        index_info = await identities.index_information()
        logger.info(f"Index summary: Identities={len(index_info)}")

    except Exception as e:
        logger.error(f"Failed to create indexes: {str(e)}", exc_info=True)
        raise
