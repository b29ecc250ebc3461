# votecast/face_utils.py
import base64
import logging
import os
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from cryptography.fernet import Fernet
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from . import config
from .errors import NoReferenceEnrolled, VotingError

logger = logging.getLogger(__name__)


class FaceOutcome(str, Enum):
    MATCHED = "matched"
    MISMATCHED = "mismatched"


class FaceMatchResult(BaseModel):
    outcome: FaceOutcome
    confidence: Optional[float] = None


class BiometricStoreUnavailable(VotingError):
    code = "biometric_store_unavailable"


def load_fernet(key: Optional[str] = config.BIOMETRIC_KEY, key_file: str = config.KEY_FILE) -> Fernet:
    """
    Use BIOMETRIC_KEY when set, otherwise read (or create once) KEY_FILE.
    """
    if key:
        return Fernet(key.encode() if isinstance(key, str) else key)
    key_dir = os.path.dirname(key_file)
    if key_dir:
        os.makedirs(key_dir, exist_ok=True)
    if not os.path.exists(key_file):
        fernet_key = Fernet.generate_key()
        with open(key_file, "wb") as kf:
            kf.write(fernet_key)
        logger.warning(f"Generated a new biometric key at {key_file}")
    else:
        with open(key_file, "rb") as kf:
            fernet_key = kf.read()
    return Fernet(fernet_key)


def to_embedding(sample: Sequence[float], dim: int = config.EMBED_DIM) -> np.ndarray:
    emb = np.asarray(sample, dtype=np.float32)
    if emb.ndim != 1 or emb.shape[0] != dim:
        raise ValueError(f"Embedding must be a flat vector of length {dim}.")
    return emb


def encrypt_embedding(fernet: Fernet, emb: np.ndarray) -> str:
    return base64.b64encode(fernet.encrypt(emb.astype(np.float32).tobytes())).decode("utf-8")


def decrypt_embedding(fernet: Fernet, emb_enc: str) -> np.ndarray:
    emb_bytes = fernet.decrypt(base64.b64decode(emb_enc))
    return np.frombuffer(emb_bytes, dtype=np.float32)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Compute cosine similarity between two 1-D numpy arrays.
    """
    if a is None or b is None:
        return -1.0
    a = a.astype(np.float32)
    b = b.astype(np.float32)
    num = np.dot(a, b)
    den = np.linalg.norm(a) * np.linalg.norm(b)
    if den == 0:
        return -1.0
    return float(num / den)


def verify_embeddings(emb_live: np.ndarray, emb_stored: np.ndarray,
                      threshold: float = config.FACE_THRESHOLD) -> Tuple[bool, float]:
    """
    Compare embeddings using cosine similarity and threshold.
    Returns (is_match, score)
    """
    score = cosine_similarity(emb_live, emb_stored)
    return score >= threshold, score


# --- Reference stores ---

class InMemoryReferenceStore:
    """Encrypted reference embeddings keyed by voter id."""

    def __init__(self, fernet: Fernet, dim: int = config.EMBED_DIM):
        self.fernet = fernet
        self.dim = dim
        self._refs: Dict[str, str] = {}

    def enroll(self, voter_id: str, embedding: Sequence[float]) -> None:
        self._refs[voter_id] = encrypt_embedding(self.fernet, to_embedding(embedding, self.dim))
        logger.info(f"Enrolled reference face for voter {voter_id}")

    def get(self, voter_id: str) -> Optional[np.ndarray]:
        emb_enc = self._refs.get(voter_id)
        if emb_enc is None:
            return None
        return decrypt_embedding(self.fernet, emb_enc)


class MongoReferenceStore:
    """Reads `biometrics.embedding_enc` from the voters collection."""

    def __init__(self, collection, fernet: Fernet, dim: int = config.EMBED_DIM):
        self.collection = collection
        self.fernet = fernet
        self.dim = dim

    def enroll(self, voter_id: str, embedding: Sequence[float]) -> None:
        biometrics = {
            "embedding_enc": encrypt_embedding(self.fernet, to_embedding(embedding, self.dim)),
            "model": "insightface_arcface_r50",
        }
        try:
            self.collection.update_one({"_id": voter_id}, {"$set": {"biometrics": biometrics}}, upsert=True)
        except PyMongoError as e:
            logger.error(f"Failed to enroll voter {voter_id}: {e}")
            raise BiometricStoreUnavailable("Biometric store is unavailable.") from e
        logger.info(f"Enrolled reference face for voter {voter_id}")

    def get(self, voter_id: str) -> Optional[np.ndarray]:
        try:
            voter = self.collection.find_one({"_id": voter_id}, {"biometrics": 1})
        except PyMongoError as e:
            logger.error(f"Failed to fetch biometrics for voter {voter_id}: {e}")
            raise BiometricStoreUnavailable("Biometric store is unavailable.") from e
        if not voter or "embedding_enc" not in voter.get("biometrics", {}):
            return None
        return decrypt_embedding(self.fernet, voter["biometrics"]["embedding_enc"])


class EmbeddingFaceMatcher:
    """
    Face-match evaluator: compares a captured embedding with the voter's
    enrolled reference. Extracting the embedding from a camera frame happens
    upstream.
    """

    def __init__(self, references, threshold: float = config.FACE_THRESHOLD,
                 dim: int = config.EMBED_DIM):
        self.references = references
        self.threshold = threshold
        self.dim = dim

    def evaluate(self, voter_id: str, sample: Sequence[float]) -> FaceMatchResult:
        emb_stored = self.references.get(voter_id)
        if emb_stored is None:
            raise NoReferenceEnrolled(
                "No reference face image found. Please complete registration first."
            )
        emb_live = to_embedding(sample, self.dim)
        match, score = verify_embeddings(emb_live, emb_stored, threshold=self.threshold)
        outcome = FaceOutcome.MATCHED if match else FaceOutcome.MISMATCHED
        logger.info(f"Face comparison for voter {voter_id}: {outcome.value} (score={score:.3f})")
        return FaceMatchResult(outcome=outcome, confidence=score)
