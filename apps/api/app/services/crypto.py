import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from apps.api.app.core.config import settings


def _fernet_from_settings() -> Fernet:
    # Accepts any ENCRYPTION_KEY string and derives a stable Fernet key.
    digest = hashlib.sha256(settings.ENCRYPTION_KEY.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_investor_password(plain_text: str) -> str:
    token = _fernet_from_settings().encrypt(plain_text.encode("utf-8"))
    return token.decode("utf-8")


def decrypt_investor_password(cipher_text: str) -> str:
    try:
        plain = _fernet_from_settings().decrypt(cipher_text.encode("utf-8"))
    except InvalidToken as exc:
        raise ValueError("Stored investor password cannot be decrypted with current ENCRYPTION_KEY") from exc
    return plain.decode("utf-8")
