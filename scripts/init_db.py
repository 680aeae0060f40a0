"""
Database initialization script - identity directory

Run once (or after a schema change) to create the identities indexes:
    python scripts/init_db.py
"""

import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables
load_dotenv()

import logging

from otpauth.db.indexes import create_indexes
from otpauth.db.mongo import close_mongo_connection, connect_to_mongo, get_identities_collection

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


MONGODB_URL = os.getenv("MONGODB_URL")
MONGODB_DB_NAME = os.getenv("MONGODB_DB_NAME")

if not MONGODB_URL or not MONGODB_DB_NAME:
    raise ValueError("❌ MONGODB_URL and MONGODB_DB_NAME must be set in .env file")


async def main():
    logger.info("=" * 60)
    logger.info("  OTP Auth Database Setup")
    logger.info("=" * 60 + "\n")

    logger.info(f"🔌 Connecting to MongoDB: {MONGODB_DB_NAME}")
    await connect_to_mongo(MONGODB_URL, MONGODB_DB_NAME)

    try:
        identities = get_identities_collection()
        await create_indexes(identities)

        logger.info("\n🔍 Verifying indexes...")
        indexes = await identities.index_information()
        for idx_name in indexes.keys():
            if idx_name != "_id_":
                logger.info(f"    ✅ {idx_name}")

        total = await identities.count_documents({})
        deactivated = await identities.count_documents({"deactivated": True})
        logger.info(f"\n📊 Identities: {total} ({deactivated} deactivated)")
        logger.info("\n✅ Database initialization complete!")

    finally:
        await close_mongo_connection()

    logger.info("\n" + "=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
