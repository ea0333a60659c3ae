#!/usr/bin/env python3
"""
Seed the fee_category_mappings table with the default fee taxonomy
"""

import asyncio
import dotenv
dotenv.load_dotenv()

from sellerledger.database import AsyncSessionLocal, create_tables, shutdown_databases
from sellerledger.services.fee_taxonomy import seed_fee_categories
from sellerledger.utils.logger import get_loggers

logger = get_loggers("SeedFeeCategories")


async def main():
    await create_tables()
    try:
        async with AsyncSessionLocal() as db:
            result = await seed_fee_categories(db)
        logger.info(f"Fee categories seeded: {result['created']} created, {result['existing']} already present")
    finally:
        await shutdown_databases()


if __name__ == "__main__":
    asyncio.run(main())
