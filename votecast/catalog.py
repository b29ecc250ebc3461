# votecast/catalog.py
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import CatalogUnavailable, NotFound
from .models.election_model import Election

logger = logging.getLogger(__name__)


class ElectionCatalog(ABC):
    """Read-only provider of elections and their candidate lists."""

    @abstractmethod
    def list_elections(self) -> List[Election]:
        ...

    @abstractmethod
    def get_election(self, election_id: int) -> Election:
        ...


class InMemoryElectionCatalog(ElectionCatalog):
    """
    Holds elections in a dict keyed by id.
    Returned objects are the stored ones, so the in-memory ledger's vote count
    increments are visible to readers (like two readers of one Mongo document).
    """

    def __init__(self, elections: Optional[Iterable[Election]] = None):
        self._elections: Dict[int, Election] = {}
        for election in elections or []:
            if election.id in self._elections:
                raise ValueError(f"Duplicate election id {election.id}")
            self._elections[election.id] = election

    def list_elections(self) -> List[Election]:
        return list(self._elections.values())

    def get_election(self, election_id: int) -> Election:
        election = self._elections.get(election_id)
        if election is None:
            raise NotFound(f"Election {election_id} not found.")
        return election


def load_elections_file(path: str) -> InMemoryElectionCatalog:
    """
    Build a catalog from a JSON file of the form {"elections": [...]}.
    A missing file yields an empty catalog.
    """
    if not os.path.exists(path):
        logger.warning(f"Elections file {path} not found, starting with an empty catalog.")
        return InMemoryElectionCatalog()
    with open(path, "r") as f:
        data = json.load(f)
    elections = [Election.model_validate(e) for e in data.get("elections", [])]
    logger.info(f"Loaded {len(elections)} elections from {path}")
    return InMemoryElectionCatalog(elections)


def election_from_document(doc: dict) -> Election:
    data = dict(doc)
    data["id"] = data.pop("_id")
    data.pop("votes", None)
    return Election.model_validate(data)


class MongoElectionCatalog(ElectionCatalog):
    """Elections collection; `_id` is the election id, votes are never projected."""

    PROJECTION = {"votes": 0}

    def __init__(self, collection):
        self.collection = collection

    def list_elections(self) -> List[Election]:
        try:
            docs = list(self.collection.find({}, self.PROJECTION).sort("_id", 1))
        except PyMongoError as e:
            logger.error(f"Failed to list elections: {e}")
            raise CatalogUnavailable("Election catalog is unavailable.") from e
        return [election_from_document(d) for d in docs]

    def get_election(self, election_id: int) -> Election:
        try:
            doc = self.collection.find_one({"_id": election_id}, self.PROJECTION)
        except PyMongoError as e:
            logger.error(f"Failed to fetch election {election_id}: {e}")
            raise CatalogUnavailable("Election catalog is unavailable.") from e
        if not doc:
            raise NotFound(f"Election {election_id} not found.")
        return election_from_document(doc)

    def publish(self, election: Election) -> None:
        """Insert an election document with an empty vote log."""
        doc = election.model_dump(exclude={"id"})
        doc["_id"] = election.id
        doc["votes"] = []
        try:
            self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.warning(f"Election {election.id} already exists.")
            raise ValueError(f"Duplicate election id {election.id}")
        except PyMongoError as e:
            logger.error(f"Failed to publish election {election.id}: {e}")
            raise CatalogUnavailable("Election catalog is unavailable.") from e
        logger.info(f"Published election {election.id}")
