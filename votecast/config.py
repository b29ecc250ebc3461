# votecast/config.py
# Central place for thresholds and constants
import os
from dotenv import load_dotenv

load_dotenv()

# --- Biometric Config ---
# Cosine similarity threshold for ArcFace embeddings (tune on validation set)
FACE_THRESHOLD = float(os.getenv("FACE_THRESHOLD", "0.40"))

# Embedding dimension (InsightFace typical 512)
EMBED_DIM = int(os.getenv("EMBED_DIM", "512"))

# Fernet key for stored reference embeddings.
# In production: use secure key management (Vault/KMS) and never hardcode keys.
BIOMETRIC_KEY = os.getenv("BIOMETRIC_KEY")
KEY_FILE = os.getenv("KEY_FILE", "data/secret.key")

# --- Verification Session ---
MAX_FACE_ATTEMPTS = int(os.getenv("MAX_FACE_ATTEMPTS", "3"))
MAX_OTP_ATTEMPTS = int(os.getenv("MAX_OTP_ATTEMPTS", "3"))
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "600"))

# --- One-time code ---
OTP_LENGTH = int(os.getenv("OTP_LENGTH", "4"))
OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "300"))
OTP_RESEND_COOLDOWN_SECONDS = int(os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "30"))

# --- Security & JWT Config ---
SECRET_KEY = os.getenv("SECRET_KEY", "a_very_secret_key_for_dev_only")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# --- Storage Config ---
# "memory" keeps everything in-process, "mongo" uses MONGO_URI / MONGO_DB
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory")
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "voting_system")
ELECTIONS_COLLECTION_NAME = "elections"
VOTERS_COLLECTION_NAME = "voters"
COUNTERS_COLLECTION_NAME = "counters"

# JSON seed for the in-memory catalog
ELECTIONS_FILE = os.getenv("ELECTIONS_FILE", "data/elections.json")

# --- App ---
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
