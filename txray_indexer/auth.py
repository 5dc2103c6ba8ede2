import secrets

import jwt

from txray_indexer.errors import AuthorizationError


def check_cron_secret(expected: str | None, *candidates: str | None) -> None:
    """The trigger is accepted when any supplied value (query or header) matches."""
    if not expected:
        raise AuthorizationError("CRON_SECRET not configured")
    for c in candidates:
        if c and secrets.compare_digest(c.encode(), expected.encode()):
            return
    raise AuthorizationError("forbidden")


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _looks_like_address(s) -> bool:
    return isinstance(s, str) and s.startswith("0x") and len(s) == 42


def wallet_from_token(token: str, secret: str | None, audience: str = "authenticated") -> str:
    """
    Verify an HS256 access token from the auth service and return the wallet it was
    issued for (lowercase). Ownership of the wallet is not re-checked here.
    """
    if not secret:
        raise AuthorizationError("JWT_SECRET not configured")
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"], audience=audience,
                            options={"require": ["exp"]})
    except jwt.PyJWTError as e:
        raise AuthorizationError(f"invalid token: {e}") from e
    wallet = claims.get("wallet_address")
    if not _looks_like_address(wallet):
        wallet = claims.get("sub")
    if not _looks_like_address(wallet):
        raise AuthorizationError("token carries no wallet address")
    return wallet.lower()


def resolve_wallet(requested: str | None, authorization: str | None, secret: str | None,
                   audience: str = "authenticated") -> str | None:
    """
    Wallet scope for a read. No wallet asked and no token -> unscoped (None).
    A wallet asked without a valid token, or one that differs from the token's, is refused.
    """
    token = bearer_token(authorization)
    if token is None:
        if requested:
            raise AuthorizationError("wallet-scoped reads need a bearer token")
        if authorization:
            raise AuthorizationError("malformed Authorization header")
        return None
    wallet = wallet_from_token(token, secret, audience)
    if requested and requested.lower() != wallet:
        raise AuthorizationError("token wallet does not match requested wallet")
    return wallet
