import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException


ROLE_ORDER = {"auditor": 0, "contributor": 1, "consultant": 2, "admin": 3}
ORG_CLAIMS = ("org", "org_id", "organization_id", "tenant", "tid")


def _require_bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    return authorization.split(" ", 1)[1].strip()


def _jwks_configured() -> bool:
    return bool(os.getenv("OIDC_JWKS_URL") or os.getenv("OIDC_JWKS") or os.getenv("OIDC_JWKS_PATH"))


def _auth_configured() -> bool:
    return bool(os.getenv("API_TOKEN") or os.getenv("OIDC_HS256_SECRET") or _jwks_configured())


def _static_role() -> str:
    role = os.getenv("API_ROLE", "admin").strip().lower()
    if role not in ROLE_ORDER:
        role = "admin"
    return role


def _decode(token: str, key: Any, algorithm: str) -> Dict[str, Any]:
    audience = os.getenv("OIDC_AUDIENCE")
    issuer = os.getenv("OIDC_ISSUER")
    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(audience)}
    claims = dict(
        jwt.decode(
            token,
            key,
            algorithms=[algorithm],
            audience=audience if audience else None,
            issuer=issuer if issuer else None,
            options=options,
        )
    )
    claims["roles"] = sorted(_extract_roles(claims))
    return claims


def _rs256_key(token: str, header: Dict[str, Any]):
    inline = os.getenv("OIDC_JWKS")
    path = os.getenv("OIDC_JWKS_PATH")
    if not inline and not path:
        jwk_client = jwt.PyJWKClient(os.getenv("OIDC_JWKS_URL"))
        return jwk_client.get_signing_key_from_jwt(token).key
    jwks = json.loads(inline) if inline else json.loads(Path(path).read_text(encoding="utf-8"))
    keys = jwks.get("keys", []) if isinstance(jwks, dict) else jwks
    kid = header.get("kid")
    selected = None
    for k in keys:
        if not kid or k.get("kid") == kid:
            selected = k
            if kid:
                break
    if not selected:
        raise HTTPException(status_code=403, detail="No matching JWK found")
    from jwt.algorithms import RSAAlgorithm
    return RSAAlgorithm.from_jwk(json.dumps(selected))


def require_auth(authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    # Read config at call time to honor runtime changes (tests, hot reloads)
    api_token = os.getenv("API_TOKEN")
    hs256_secret = os.getenv("OIDC_HS256_SECRET")

    # Nothing configured: local development, caller acts as admin
    if not _auth_configured():
        return {"auth": "dev-mode", "sub": "dev-user", "roles": ["admin"]}

    token = _require_bearer(authorization)

    # Opaque tokens go to the static token path
    if api_token and token.count(".") < 2:
        if token != api_token:
            raise HTTPException(status_code=403, detail="Invalid token")
        return {"auth": "static-token", "sub": "api-token", "roles": [_static_role()]}

    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError:
        header = {}
    alg = str(header.get("alg", "")).upper()

    if _jwks_configured() and (alg.startswith("RS") or not hs256_secret):
        try:
            return _decode(token, _rs256_key(token, header), "RS256")
        except HTTPException:
            raise
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except (jwt.PyJWTError, ValueError) as e:
            raise HTTPException(status_code=403, detail=f"Invalid RS256 token: {str(e)}")

    if hs256_secret:
        try:
            return _decode(token, hs256_secret, "HS256")
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.InvalidTokenError as e:
            raise HTTPException(status_code=403, detail=f"Invalid token: {str(e)}")

    if api_token:
        if token != api_token:
            raise HTTPException(status_code=403, detail="Invalid token")
        return {"auth": "static-token", "sub": "api-token", "roles": [_static_role()]}

    raise HTTPException(status_code=401, detail="Unauthorized")


def optional_jwt_claims(authorization: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort claims for request logging; never raises."""
    if not authorization or not _auth_configured():
        return None
    try:
        return require_auth(authorization)
    except HTTPException:
        return None


# --- RBAC helpers ---
def highest_role(roles) -> Optional[str]:
    known = [r for r in roles if r in ROLE_ORDER]
    if not known:
        return None
    return max(known, key=lambda r: ROLE_ORDER[r])


def role_required(min_role: str):
    min_role = min_role.lower()
    if min_role not in ROLE_ORDER:
        raise ValueError("Unknown role")

    def _dep(authorization: Optional[str] = Header(default=None)):
        claims = require_auth(authorization)
        roles = set([r.lower() for r in claims.get("roles", [])])
        has = any(ROLE_ORDER.get(r, -1) >= ROLE_ORDER[min_role] for r in roles)
        if not has:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return claims

    return _dep


def claim_org_id(claims: Optional[Dict[str, Any]]) -> Optional[str]:
    for k in ORG_CLAIMS:
        if claims and claims.get(k):
            return str(claims[k])
    return None


def resolve_org_id(claims: Optional[Dict[str, Any]], org_header: Optional[str] = None) -> str:
    # X-Org-ID is a dev-mode convenience only; verified tokens carry their own org
    claim_org = claim_org_id(claims)
    default_org = os.getenv("DEFAULT_ORG_ID", "default-org")
    if _auth_configured() or os.getenv("ENV", "dev").lower() == "prod":
        return claim_org or default_org
    return org_header or claim_org or default_org


def _extract_roles(claims: dict) -> set:
    roles = set()
    for key in ("roles", "role", "scope", "permissions"):
        if key in claims and claims[key]:
            val = claims[key]
            if isinstance(val, str):
                roles.update([p.strip().lower() for p in val.split() if p.strip()])
            elif isinstance(val, (list, tuple)):
                roles.update([str(p).strip().lower() for p in val])
    if not roles & set(ROLE_ORDER):
        roles.add("auditor")
    return roles
