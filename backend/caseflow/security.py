"""HMAC-signed tokens.

Two kinds share one format, ``<base64url(json claims)>.<base64url(hmac-sha256)>``:

  - access tokens: ``{sub, role, name, exp}`` minted by the upstream auth
    service (``issue_access_token`` exists for tests and the CLI)
  - search tokens: bind a search's normalized criteria to the candidate ids
    it returned, so a later decision can prove it echoes a real search
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Iterable

from caseflow.access import Principal
from caseflow.dedup.models import SearchCriteria
from caseflow.errors import InvalidSearchToken

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TTL_SECONDS = 8 * 60 * 60
_SEARCH_TOKEN_TYPE = "dedup-search"


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _digest(payload: str, secret: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), payload.encode("ascii"), hashlib.sha256)
    return _b64encode(mac.digest())


def sign_claims(claims: dict[str, Any], secret: str) -> str:
    payload = _b64encode(
        json.dumps(claims, sort_keys=True, separators=(",", ":")).encode("utf-8")
    )
    return f"{payload}.{_digest(payload, secret)}"


def verify_claims(token: str, secret: str, now: float | None = None) -> dict[str, Any] | None:
    """Return the claims if the signature holds and ``exp`` is in the future, else None."""
    if not isinstance(token, str) or not token.isascii() or token.count(".") != 1:
        return None
    payload, signature = token.split(".")
    if not hmac.compare_digest(signature, _digest(payload, secret)):
        return None
    try:
        claims = json.loads(_b64decode(payload))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(claims, dict):
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or exp <= (time.time() if now is None else now):
        return None
    return claims


# ── Access tokens ──

def issue_access_token(
    user_id: str,
    role: str,
    secret: str,
    name: str | None = None,
    ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS,
) -> str:
    claims = {"sub": user_id, "role": role, "exp": int(time.time()) + ttl_seconds}
    if name:
        claims["name"] = name
    return sign_claims(claims, secret)


def decode_access_token(token: str, secret: str) -> Principal | None:
    claims = verify_claims(token, secret)
    if claims is None:
        return None
    return Principal(id=claims.get("sub"), role=claims.get("role"), name=claims.get("name"))


# ── Search tokens ──

def issue_search_token(
    criteria: SearchCriteria,
    candidate_ids: Iterable[str],
    secret: str,
    ttl_seconds: int,
) -> str:
    claims = {
        "typ": _SEARCH_TOKEN_TYPE,
        "crit": criteria.to_dict(),
        "ids": sorted(set(candidate_ids)),
        "exp": int(time.time()) + ttl_seconds,
    }
    return sign_claims(claims, secret)


def verify_search_token(
    token: str,
    criteria: SearchCriteria,
    candidate_ids: Iterable[str],
    secret: str,
):
    """Raise ``InvalidSearchToken`` unless ``token`` was issued for exactly this
    criteria / candidate set and has not expired."""
    claims = verify_claims(token, secret)
    if claims is None or claims.get("typ") != _SEARCH_TOKEN_TYPE:
        logger.warning("Search token rejected: bad signature, wrong type or expired")
        raise InvalidSearchToken()
    if claims.get("crit") != criteria.to_dict():
        logger.warning("Search token rejected: criteria differ from the signed search")
        raise InvalidSearchToken()
    if claims.get("ids") != sorted(set(candidate_ids)):
        logger.warning("Search token rejected: candidates differ from the signed search")
        raise InvalidSearchToken()
