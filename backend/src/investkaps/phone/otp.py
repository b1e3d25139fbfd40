"""Phone verification via 2Factor OTP (AUTOGEN3 / VERIFY3)"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field

import requests

from investkaps.config import settings
from investkaps.errors import BadRequestError, RateLimitedError, UpstreamError

logger = logging.getLogger(__name__)

RESEND_COOLDOWN = 60        # seconds between sends
OTP_TTL = 10 * 60           # seconds an OTP stays valid
MAX_VERIFY_ATTEMPTS = 3

_PHONE_RE = re.compile(r"^\d{10}$")
_OTP_RE = re.compile(r"^\d{4}$")


@dataclass
class OtpSession:
    user_id: int
    sent_at: float = field(default_factory=time.monotonic)
    attempts: int = 0

    @property
    def expired(self) -> bool:
        return time.monotonic() - self.sent_at > OTP_TTL


def normalize_phone(phone: str | None) -> str:
    """Digits only, must be a 10-digit Indian mobile number"""
    if not phone:
        raise BadRequestError("Phone number is required")
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 12 and digits.startswith("91"):
        digits = digits[2:]
    if not _PHONE_RE.match(digits):
        raise BadRequestError("Phone number must be 10 digits")
    return digits


class TwoFactorClient:
    """2Factor.in SMS OTP API"""

    def __init__(self, api_key: str | None = None, base_url: str | None = None) -> None:
        self._api_key = api_key or settings.TWOFACTOR_API_KEY
        self._base_url = (base_url or settings.TWOFACTOR_API_URL).rstrip("/")

    def _call(self, path: str) -> dict:
        if not self._api_key:
            raise UpstreamError("OTP service is not configured")
        try:
            resp = requests.get(f"{self._base_url}/{self._api_key}{path}", timeout=10)
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise UpstreamError(f"OTP service request failed: {e}") from e
        return data

    def send(self, full_phone: str) -> bool:
        data = self._call(f"/SMS/{full_phone}/AUTOGEN3/OTP1")
        return data.get("Status") == "Success"

    def verify(self, full_phone: str, otp: str) -> bool:
        data = self._call(f"/SMS/VERIFY3/{full_phone}/{otp}")
        return data.get("Status") == "Success"


class OtpManager:
    """In-memory OTP sessions keyed by "91" + phone"""

    def __init__(self, client: TwoFactorClient | None = None) -> None:
        self.client = client or TwoFactorClient()
        self._sessions: dict[str, OtpSession] = {}
        self._lock = threading.Lock()

    def send(self, user_id: int, phone: str) -> None:
        key = f"91{phone}"
        with self._lock:
            existing = self._sessions.get(key)
            if existing is not None:
                elapsed = time.monotonic() - existing.sent_at
                if elapsed < RESEND_COOLDOWN:
                    wait = int(RESEND_COOLDOWN - elapsed) + 1
                    raise RateLimitedError(
                        f"Please wait {wait} seconds before requesting a new OTP",
                        retry_after=wait,
                    )
            # reserve the slot so concurrent requests hit the cooldown
            reserved = self._sessions[key] = OtpSession(user_id=user_id)

        try:
            sent = self.client.send(key)
        except Exception:
            self._release(key, reserved, existing)
            raise
        if not sent:
            self._release(key, reserved, existing)
            raise BadRequestError("Failed to send OTP")
        logger.info("OTP sent to user %s (***%s)", user_id, phone[-4:])

    def _release(self, key: str, reserved: OtpSession, previous: OtpSession | None) -> None:
        with self._lock:
            if self._sessions.get(key) is not reserved:
                return
            if previous is None:
                del self._sessions[key]
            else:
                self._sessions[key] = previous

    def verify(self, user_id: int, phone: str, otp: str) -> None:
        """Raise unless the OTP is accepted; the session is cleared on success"""
        if not _OTP_RE.match(str(otp or "")):
            raise BadRequestError("OTP must be 4 digits")

        key = f"91{phone}"
        with self._lock:
            state = self._sessions.get(key)
            if state is None or state.user_id != user_id:
                raise BadRequestError("No OTP requested for this number")
            if state.expired:
                del self._sessions[key]
                raise BadRequestError("OTP expired, please request a new one")
            if state.attempts >= MAX_VERIFY_ATTEMPTS:
                del self._sessions[key]
                raise BadRequestError("Too many attempts, please request a new OTP")
            state.attempts += 1

        if not self.client.verify(key, otp):
            attempts_left = max(0, MAX_VERIFY_ATTEMPTS - state.attempts)
            raise BadRequestError("Invalid OTP", attempts_left=attempts_left)

        with self._lock:
            self._sessions.pop(key, None)
        logger.info("Phone verified for user %s", user_id)


otp_manager = OtpManager()
