"""NSE KRA PAN inquiry client (XML over HTTPS)

1. getpassword: exchange the plain password + passkey for an encrypted one
2. kycfetch: PAN inquiry, returns APP_* fields or an ERROR block
"""

import logging
import re
import xml.etree.ElementTree as ET
from datetime import date
from xml.sax.saxutils import escape

import requests

from investkaps.config import settings
from investkaps.errors import BadRequestError, UpstreamError

logger = logging.getLogger(__name__)

_HEADERS = {
    "Content-Type": "application/xml; charset=utf-8",
    "Accept": "application/xml",
    "User-Agent": "Mozilla/5.0",
}

# KRA tag -> (key, description)
FIELD_MAP = {
    "APP_PAN_NO": ("PAN", "PAN Number"),
    "APP_NAME": ("Name", "Full Name"),
    "APP_STATUS": ("Status", "KYC Status"),
    "APP_STATUSDT": ("StatusDate", "Status Date"),
    "APP_KYC_MODE": ("KYCMode", "KYC Mode (0-4)"),
    "APP_IPV_FLAG": ("IPVFlag", "In-Person Verification"),
    "APP_F_NAME": ("FatherName", "Father's Name"),
    "APP_DOB_DT": ("DOB", "Date of Birth"),
    "APP_GEN": ("Gender", "Gender"),
    "APP_COR_ADD1": ("Address1", "Address Line 1"),
    "APP_COR_CITY": ("City", "City"),
    "APP_COR_PINCD": ("Pincode", "PIN Code"),
    "APP_COR_STATE": ("State", "State Code"),
    "APP_MOB_NO": ("Mobile", "Mobile Number"),
    "APP_EMAIL": ("Email", "Email Address"),
}


class KraError(UpstreamError):
    """KRA returned an ERROR block"""


def _parse(xml_text: str) -> ET.Element:
    try:
        return ET.fromstring(xml_text.strip())
    except ET.ParseError as e:
        raise UpstreamError(f"Invalid KRA response: {e}") from e


def _find_text(root: ET.Element, tag: str) -> str | None:
    """Text of the first element named tag (namespace-agnostic)"""
    for el in root.iter():
        if el.tag.rsplit("}", 1)[-1].upper() == tag.upper():
            return (el.text or "").strip()
    return None


def parse_kyc_response(xml_text: str) -> dict:
    """Map a kycfetch response to {key: {value, description}}"""
    root = _parse(xml_text)
    error_code = _find_text(root, "ERROR_CODE")
    error_msg = _find_text(root, "ERROR_MSG")
    if error_code is not None or error_msg is not None:
        raise KraError(f"{error_code or 'UNKNOWN'}: {error_msg or 'Unknown error'}")

    data = {}
    for tag, (key, description) in FIELD_MAP.items():
        value = _find_text(root, tag)
        data[key] = {"value": value or "N/A", "description": description}
    return data


class KraClient:
    """NSE KRA intermediary API"""

    def __init__(self, base_url: str | None = None, timeout: float = 15.0) -> None:
        self._base_url = (base_url or settings.KRA_BASE_URL).rstrip("/")
        self._timeout = timeout

    def _post(self, path: str, body: str) -> str:
        try:
            resp = requests.post(
                f"{self._base_url}/{path}",
                data=body.encode("utf-8"),
                headers=_HEADERS,
                timeout=self._timeout,
                allow_redirects=False,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("KRA %s failed: %s", path, e)
            raise UpstreamError(f"KRA request failed: {e}") from e
        return resp.text

    def _check_credentials(self) -> None:
        missing = [
            name for name in ("KRA_USERNAME", "KRA_PASSWORD", "KRA_PASS_KEY", "KRA_POS_CODE")
            if not getattr(settings, name)
        ]
        if missing:
            raise UpstreamError(f"KYC service is not configured: {', '.join(missing)}")

    def get_encrypted_password(self) -> str:
        body = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            "<GetPassword>"
            f"<Passkey>{escape(settings.KRA_PASS_KEY)}</Passkey>"
            f"<Password>{escape(settings.KRA_PASSWORD)}</Password>"
            "</GetPassword>"
        )
        root = _parse(self._post("getpassword", body))
        password = _find_text(root, "GetPasswordResult") or _find_text(root, "PASSWORD")
        if not password:
            raise UpstreamError("KRA did not return an encrypted password")
        return password

    def fetch_kyc(self, pan: str, dob: str = "") -> dict:
        """PAN inquiry, returns mapped fields"""
        self._check_credentials()
        encrypted = self.get_encrypted_password()
        body = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            "<APP_REQ_ROOT>"
            "<APP_PAN_INQ>"
            f"<APP_PAN_NO>{escape(pan)}</APP_PAN_NO>"
            f"<APP_PAN_DOB>{escape(dob)}</APP_PAN_DOB>"
            f"<APP_POS_CODE>{escape(settings.KRA_POS_CODE)}</APP_POS_CODE>"
            "</APP_PAN_INQ>"
            "<APP_SUMM_REC>"
            f"<APP_REQ_DATE>{date.today().strftime('%d-%m-%Y')}</APP_REQ_DATE>"
            "</APP_SUMM_REC>"
            f"<USERNAME>{escape(settings.KRA_USERNAME)}</USERNAME>"
            f"<PASSWORD>{escape(encrypted)}</PASSWORD>"
            f"<PASSKEY>{escape(settings.KRA_PASS_KEY)}</PASSKEY>"
            "</APP_REQ_ROOT>"
        )
        data = parse_kyc_response(self._post("kycfetch", body))
        logger.info("KRA inquiry completed: %s", pan[:5] + "****" + pan[-1:])
        return data


def validate_pan(pan: str | None) -> str:
    """Uppercased PAN, 400 unless AAAAA9999A"""
    pan = (pan or "").strip().upper()
    if not re.fullmatch(r"[A-Z]{5}[0-9]{4}[A-Z]", pan):
        raise BadRequestError("Invalid PAN format")
    return pan
