# ispscore/security.py
from __future__ import annotations

import hmac
import logging

import bcrypt

logger = logging.getLogger(__name__)

_BCRYPT_MAX_BYTES = 72
_BCRYPT_DEFAULT_COST = 12


def _to_bytes(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > _BCRYPT_MAX_BYTES:
        logger.warning("[security] contraseña de más de %s bytes; se trunca", _BCRYPT_MAX_BYTES)
        encoded = encoded[:_BCRYPT_MAX_BYTES]
    return encoded


def is_hashed(value: str | None) -> bool:
    return bool(value) and value.startswith(("$2a$", "$2b$", "$2y$"))


def hash_password(password: str, *, rounds: int = _BCRYPT_DEFAULT_COST) -> str:
    return bcrypt.hashpw(_to_bytes(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, stored: str | None) -> bool:
    """
    Verifica contra un hash bcrypt. Las filas antiguas guardadas en texto plano
    se comparan en tiempo constante (se re-hashean en el próximo login).
    """
    if not stored:
        return False
    if not is_hashed(stored):
        return hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))
    try:
        return bool(bcrypt.checkpw(_to_bytes(password), stored.encode("utf-8")))
    except ValueError as exc:
        logger.warning("[security] hash bcrypt inválido: %s", exc)
        return False
