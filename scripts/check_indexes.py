"""
Checks that the identities collection carries the unique indexes the
registration path relies on:
    python scripts/check_indexes.py
"""

import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent.parent))
load_dotenv()

from otpauth.db.mongo import close_mongo_connection, connect_to_mongo, get_identities_collection

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

REQUIRED_UNIQUE = ("phone_number_unique", "identity_id_unique")


async def check_indexes():
    await connect_to_mongo()
    identities = get_identities_collection()
    missing = []

    try:
        indexes = await identities.index_information()
        logger.info(f"Existing indexes: {list(indexes.keys())}")

        for name in REQUIRED_UNIQUE:
            info = indexes.get(name)
            if info and info.get("unique"):
                logger.info(f"✅ '{name}' exists and is unique.")
            elif info:
                logger.error(f"❌ '{name}' exists but is NOT unique. Drop it and run scripts/init_db.py")
                missing.append(name)
            else:
                logger.error(f"❌ '{name}' is missing. Run scripts/init_db.py")
                missing.append(name)
    finally:
        await close_mongo_connection()

    return not missing


if __name__ == "__main__":
    sys.exit(0 if asyncio.run(check_indexes()) else 1)
