import logging
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings

logger = logging.getLogger(__name__)


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="access-token")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"), hashed_password.encode("utf-8")
        )
    except ValueError:
        # malformed stored hash
        return False


def generate_access_token(user_id: int, role: str = "USER") -> str:
    return _serializer().dumps({"u": user_id, "r": role})


def read_access_token(
    token: str, max_age_secs: Optional[int] = None
) -> Optional[dict[str, object]]:
    """Return the token claims, or None when the token is forged or expired."""
    if max_age_secs is None:
        max_age_secs = get_settings().token_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except SignatureExpired:
        logger.info("access_token_expired")
        return None
    except BadSignature:
        return None

    if not isinstance(data, dict) or not isinstance(data.get("u"), int):
        return None
    return data
