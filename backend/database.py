from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import OperationFailure
import logging

logger = logging.getLogger(__name__)


class Database:
    """MongoDB connection owned by the process for its lifetime.

    Constructed once in the FastAPI lifespan and passed to the document
    store adapter; there is no module-level instance.
    """

    def __init__(self, mongo_url: str, db_name: str):
        self.mongo_url = mongo_url
        self.db_name = db_name
        self.client: AsyncIOMotorClient = None
        self.db = None

    async def connect(self):
        try:
            self.client = AsyncIOMotorClient(self.mongo_url, tz_aware=True)
            self.db = self.client[self.db_name]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {self.db_name}")

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
        """Create MongoDB indexes for account lookups, history queries and webhook idempotency."""
        try:
            # Account record - one per account id
            await self.db.users.create_index("account_id", unique=True)
            # Reverse lookup for invoice events that carry only the Stripe customer
            await self.db.users.create_index("billing_customer_ref", sparse=True)

            # Generation log - history listing and monthly counts
            await self.db.generations.create_index("generation_id", unique=True)
            await self.db.generations.create_index([("account_id", 1), ("timestamp", -1)])
            await self.db.generations.create_index([("account_id", 1), ("content_type", 1), ("timestamp", -1)])

            # Billing events - duplicate Stripe event_id must not process twice
            try:
                await self.db.billing_events.create_index(
                    "event_id",
                    unique=True,
                    partialFilterExpression={"event_id": {"$type": "string"}},
                )
            except OperationFailure:
                logger.warning("billing_events.event_id index exists with different options")
            await self.db.billing_events.create_index([("account_id", 1), ("created_at", -1)])
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")
