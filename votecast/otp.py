# votecast/otp.py
"""
One-time-code channel.

Generates a numeric code bound to a verification session, delivers it through
a sender, and checks submitted codes. The resend cooldown and code expiry are
owned here, not by the workflow.
"""
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict

from passlib.context import CryptContext

from . import config
from .errors import ResendCooldown
from .models.election_model import utcnow

logger = logging.getLogger(__name__)

otp_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class OtpOutcome(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"


@dataclass(frozen=True)
class OtpTicket:
    expires_at: datetime
    resend_available_at: datetime


@dataclass
class _PendingCode:
    code_hash: str
    issued_at: datetime
    expires_at: datetime


class LoggingOtpSender:
    """Development sender: writes the code to the log instead of SMS/email."""

    def send(self, recipient: str, code: str) -> None:
        logger.info(f"One-time code for {recipient}: {code}")


class HashedOtpChannel:
    def __init__(self, sender=None, length: int = config.OTP_LENGTH,
                 ttl_seconds: int = config.OTP_TTL_SECONDS,
                 cooldown_seconds: int = config.OTP_RESEND_COOLDOWN_SECONDS,
                 clock=utcnow):
        self.sender = sender or LoggingOtpSender()
        self.length = length
        self.ttl = timedelta(seconds=ttl_seconds)
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.clock = clock
        self._lock = threading.Lock()
        self._pending: Dict[str, _PendingCode] = {}

    def generate_code(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self.length))

    def issue(self, key: str, recipient: str = None) -> OtpTicket:
        now = self.clock()
        with self._lock:
            self._drop_expired(now)
            pending = self._pending.get(key)
            if pending is not None and now < pending.issued_at + self.cooldown:
                retry_after = (pending.issued_at + self.cooldown - now).total_seconds()
                logger.warning(f"One-time code resend for {key} refused, retry in {retry_after:.0f}s")
                raise ResendCooldown("Please wait before requesting a new code.", retry_after=retry_after)
            code = self.generate_code()
            self._pending[key] = _PendingCode(
                code_hash=otp_context.hash(code), issued_at=now, expires_at=now + self.ttl
            )
        self.sender.send(recipient or key, code)
        return OtpTicket(expires_at=now + self.ttl, resend_available_at=now + self.cooldown)

    def has_pending(self, key: str) -> bool:
        pending = self._pending.get(key)
        return pending is not None and self.clock() < pending.expires_at

    def check(self, key: str, code: str) -> OtpOutcome:
        now = self.clock()
        with self._lock:
            pending = self._pending.get(key)
            if pending is None:
                return OtpOutcome.INCORRECT
            if now >= pending.expires_at:
                del self._pending[key]
                logger.info(f"One-time code for {key} expired")
                return OtpOutcome.INCORRECT
            if not code or not otp_context.verify(code, pending.code_hash):
                return OtpOutcome.INCORRECT
            # single use
            del self._pending[key]
        return OtpOutcome.CORRECT

    def discard(self, key: str) -> None:
        with self._lock:
            self._pending.pop(key, None)

    def pending_count(self) -> int:
        return len(self._pending)

    def _drop_expired(self, now: datetime) -> None:
        # caller holds _lock
        for key in [k for k, p in self._pending.items() if p.expires_at <= now]:
            del self._pending[key]
