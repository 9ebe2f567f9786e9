from fastapi import Depends, Header, HTTPException, Request
from jose import ExpiredSignatureError, JWTError, jwt

from .config import Settings

ALGO = "HS256"


def decode_token(token: str, settings: Settings) -> dict:
    options = {"verify_aud": bool(settings.jwt_audience)}
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[ALGO],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        options=options,
    )


def require_user(request: Request, authorization: str = Header(default=None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        claims = decode_token(token, request.app.state.settings)
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    claims["raw_token"] = token
    return claims


def is_admin(claims: dict) -> bool:
    # Tokens from the storefront auth carry role; older ones carry is_admin
    return bool(claims.get("is_admin")) or claims.get("role") == "admin"


def require_admin(claims: dict = Depends(require_user)) -> dict:
    if not is_admin(claims):
        raise HTTPException(status_code=403, detail="Admin access required")
    return claims
