"""Clerk session token + webhook verification"""

import base64
import hashlib
import hmac
import logging
import time

import jwt
import requests

from investkaps.config import settings
from investkaps.errors import AuthenticationError, UpstreamError

logger = logging.getLogger(__name__)

WEBHOOK_TOLERANCE = 5 * 60  # seconds

_jwks_client: jwt.PyJWKClient | None = None


def _get_jwks_client() -> jwt.PyJWKClient:
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = jwt.PyJWKClient(settings.CLERK_JWKS_URL)
    return _jwks_client


def parse_bearer(authorization: str | None) -> str:
    """Token from an 'Authorization: Bearer ...' header"""
    if not authorization:
        raise AuthenticationError("Not authorized, no token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Not authorized, invalid token format")
    return token.strip()


def fetch_clerk_user(clerk_id: str) -> dict:
    """GET /users/{id} from the Clerk backend API"""
    if not settings.CLERK_SECRET_KEY:
        raise AuthenticationError("Authentication is not configured")
    try:
        resp = requests.get(
            f"{settings.CLERK_API_URL}/users/{clerk_id}",
            headers={"Authorization": f"Bearer {settings.CLERK_SECRET_KEY}"},
            timeout=10,
        )
    except requests.RequestException as e:
        raise UpstreamError(f"Clerk request failed: {e}") from e
    if resp.status_code in (401, 403, 404):
        raise AuthenticationError("Not authorized, user verification failed")
    if resp.status_code >= 400:
        raise UpstreamError(f"Clerk API error ({resp.status_code})")
    return resp.json()


def verify_session_token(token: str) -> str:
    """Validate a Clerk session JWT and return its subject (Clerk user id)"""
    if settings.CLERK_JWKS_URL:
        try:
            signing_key = _get_jwks_client().get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                options={"verify_aud": False},
            )
        except jwt.PyJWTError as e:
            logger.warning("Clerk token rejected: %s", e)
            raise AuthenticationError("Not authorized, token failed") from e
        return _subject(claims)

    # no JWKS configured: confirm the subject against the Clerk API
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise AuthenticationError("Not authorized, invalid token") from e
    clerk_id = _subject(claims)
    fetch_clerk_user(clerk_id)
    return clerk_id


def _subject(claims: dict) -> str:
    sub = claims.get("sub")
    if not sub:
        raise AuthenticationError("Not authorized, invalid token payload")
    return sub


def verify_webhook(headers: dict[str, str], body: bytes) -> None:
    """Svix signature check for Clerk webhooks (no-op without a secret)"""
    secret = settings.CLERK_WEBHOOK_SECRET
    if not secret:
        return

    msg_id = headers.get("svix-id")
    timestamp = headers.get("svix-timestamp")
    signatures = headers.get("svix-signature")
    if not (msg_id and timestamp and signatures):
        raise AuthenticationError("Missing webhook signature headers")

    try:
        if abs(time.time() - int(timestamp)) > WEBHOOK_TOLERANCE:
            raise AuthenticationError("Webhook timestamp out of tolerance")
    except ValueError as e:
        raise AuthenticationError("Invalid webhook timestamp") from e

    key = base64.b64decode(secret.removeprefix("whsec_"))
    signed = f"{msg_id}.{timestamp}.".encode() + body
    expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode()

    for candidate in signatures.split():
        _, _, value = candidate.partition(",")
        if hmac.compare_digest(value, expected):
            return
    raise AuthenticationError("Invalid webhook signature")
