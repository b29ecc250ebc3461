import logging

from pymongo import MongoClient

from .. import config

logger = logging.getLogger(__name__)


class MongoConnector:
    """Opens the client and prepares the collections and indexes the ledger relies on."""

    def __init__(self, uri: str = config.MONGO_URI, db_name: str = config.MONGO_DB, client=None):
        try:
            self.client = client or MongoClient(uri, tz_aware=True)
            self.db = self.client[db_name]
            self.elections = self.db[config.ELECTIONS_COLLECTION_NAME]
            self.voters = self.db[config.VOTERS_COLLECTION_NAME]
            self.counters = self.db[config.COUNTERS_COLLECTION_NAME]
            # lookups for has_voted and the duplicate guard
            self.elections.create_index("votes.voter_id")
            self.client.server_info()
            logger.info(f"Connected to MongoDB: {db_name}")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    def close(self):
        self.client.close()
        logger.info("MongoDB connection closed")
