from typing import Optional

import jwt


def user_id_from_authorization(header: Optional[str], secret_key: str) -> Optional[str]:
    """Return the ``sub`` claim of a valid HS256 bearer token, else None (guest)."""
    if not header or not header.lower().startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    if not token:
        return None
    try:
        claims = jwt.decode(token, secret_key, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    sub = claims.get("sub")
    return str(sub) if sub else None


def issue_token(user_id: str, secret_key: str, **claims) -> str:
    payload = {"sub": user_id}
    payload.update(claims)
    return jwt.encode(payload, secret_key, algorithm="HS256")
