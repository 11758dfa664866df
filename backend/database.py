from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for the credit ledger and analysis jobs."""
        await create_ledger_indexes(self.db)


async def create_ledger_indexes(db):
    """Unique keys back the atomic account and settlement updates."""
    try:
        # Accounts - one per user; CAS updates filter on user_id
        await db.credit_accounts.create_index("user_id", unique=True)

        # Transactions - history queries and claimed-settlement sweep
        await db.credit_transactions.create_index("transaction_id", unique=True)
        await db.credit_transactions.create_index([("user_id", 1), ("created_at", -1)])
        await db.credit_transactions.create_index([("status", 1), ("settling", 1)])

        # Jobs
        await db.analysis_jobs.create_index("job_id", unique=True)
        await db.analysis_jobs.create_index([("user_id", 1), ("created_at", -1)])
        await db.analysis_jobs.create_index("credit_transaction_id", sparse=True)
        await db.analysis_jobs.create_index("reconciliation_status")

        await db.analysis_results.create_index("job_id")

        # Pricing - one entry per job type
        await db.service_pricing.create_index("job_type", unique=True)

        logger.info("MongoDB indexes created successfully")
    except Exception as e:
        logger.warning(f"Index creation warning (may already exist): {e}")

# Global database instance
database = Database()

@asynccontextmanager
async def get_db_context():
    """Context manager for standalone scripts to access the database.

    Usage in scripts:
        async with get_db_context() as db:
            services = build_services(db)
    """
    client = None
    try:
        mongo_url = os.environ['MONGO_URL']
        db_name = os.environ['DB_NAME']
        client = AsyncIOMotorClient(mongo_url)
        db = client[db_name]
        # Verify connection
        await db.command("ping")
        logger.info(f"Script connected to MongoDB: {db_name}")
        yield db
    finally:
        if client:
            client.close()
            logger.info("Script MongoDB connection closed")
