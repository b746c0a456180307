from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from lawfirm_authz.configs.settings import Settings
from lawfirm_authz.errors import AuthError
from lawfirm_authz.configs.logging_config import get_logger

log = get_logger(__name__)

CLAIM_VERSION = "ver"
CLAIM_TENANT = "tid"
CLAIM_ROLE_HINT = "rol"
CLAIM_IMPERSONATION = "imp"

# Markers written by credentials issued before `ver` existed.
LEGACY_CLAIMS = ("role", "lawFirmId", "platformUserId")


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """
    Decode and validate a bearer credential (signature, expiry, issuer, audience).

    The reason a credential failed is logged here and never returned to callers.
    """
    try:
        options = {
            "verify_aud": settings.jwt_audience is not None,
            "require_exp": True,
            "require_sub": True,
        }
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_alg],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        log.debug("jwt.decode ok sub=%s tid=%s ver=%s", claims.get("sub"), claims.get(CLAIM_TENANT), claims.get(CLAIM_VERSION))
        return claims
    except JWTError as e:
        log.info("jwt.decode failed: %s", str(e))
        raise AuthError("invalid token") from e


def issue_token(
    subject: str,
    settings: Settings,
    *,
    tenant_id: str | None = None,
    ttl_seconds: int | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> tuple[str, dict[str, Any]]:
    """Mint a signed credential. Returns the encoded token and the claims it carries."""
    now = datetime.now(timezone.utc)
    ttl = ttl_seconds if ttl_seconds is not None else settings.credential_ttl_seconds
    claims: dict[str, Any] = {
        "sub": subject,
        "jti": uuid.uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        CLAIM_VERSION: settings.credential_version,
    }
    if tenant_id:
        claims[CLAIM_TENANT] = tenant_id
    if settings.jwt_issuer:
        claims["iss"] = settings.jwt_issuer
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience
    if extra_claims:
        claims.update(extra_claims)

    token = jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_alg)
    log.info("jwt.issue sub=%s tid=%s jti=%s ttl=%s", subject, tenant_id, claims["jti"], ttl)
    return token, claims
