"""Leegality e-sign API client"""

import base64
import logging
import random
import time

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from investkaps.config import settings
from investkaps.errors import BadRequestError, UpstreamError

logger = logging.getLogger(__name__)


class LeegalityServerError(UpstreamError):
    """5xx from Leegality (retried once)"""


def generate_irn() -> str:
    """Internal reference number, INV-<ms>-<4 digits>"""
    return f"INV-{int(time.time() * 1000)}-{random.randint(1000, 9999)}"


class LeegalityClient:
    """Sign request creation and status lookup"""

    def __init__(
        self,
        auth_token: str | None = None,
        profile_id: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.auth_token = auth_token or settings.LEEGALITY_AUTH_TOKEN
        self.profile_id = profile_id or settings.LEEGALITY_PROFILE_ID
        self._base_url = (base_url or settings.LEEGALITY_API_URL).rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({
            "X-Auth-Token": self.auth_token,
            "Content-Type": "application/json",
        })

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(LeegalityServerError),
        reraise=True,
    )
    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.auth_token:
            raise UpstreamError("E-sign service is not configured")
        try:
            resp = self._session.request(
                method, f"{self._base_url}{path}", timeout=self._timeout, **kwargs,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Leegality request failed: {e}") from e

        if resp.status_code >= 500:
            logger.warning("Leegality %s %s -> %d", method, path, resp.status_code)
            raise LeegalityServerError(f"Leegality server error ({resp.status_code})")
        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}
        if resp.status_code >= 400:
            raise UpstreamError(
                f"Leegality rejected the request ({resp.status_code})", details=data,
            )
        return data

    def create_sign_request(
        self,
        name: str,
        email: str,
        pdf: bytes,
        file_name: str = "Terms and Conditions",
        irn: str | None = None,
    ) -> dict:
        """Upload a PDF and invite one signer"""
        if not pdf:
            raise BadRequestError("PDF file is empty")
        if not email:
            raise BadRequestError("Signer email is required")

        payload = {
            "profileId": self.profile_id,
            "file": {
                "name": file_name,
                "fields": [{"file": base64.b64encode(pdf).decode("ascii")}],
            },
            "invitees": [{"name": name, "email": email, "phone": ""}],
            "irn": irn or generate_irn(),
        }
        logger.info("Creating sign request %s for %s", payload["irn"], email)
        return self._request("POST", "/sign/request", json=payload)

    def check_status(self, request_id: str) -> dict:
        return self._request("GET", f"/sign/request/{request_id}")


def extract_request(result: dict) -> tuple[str | None, str | None]:
    """(document/request id, first invitee sign URL) from a create response"""
    data = result.get("data") or {}
    request_id = data.get("documentId") or data.get("requestId")
    invitees = data.get("invitees") or []
    sign_url = invitees[0].get("signUrl") if invitees else None
    return request_id, sign_url
