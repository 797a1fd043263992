"""
Utilidades de seguridad: hashing de contraseñas, generación de
credenciales, tokens compartidos y firmas de webhooks.
"""
import hashlib
import hmac
import secrets
from typing import Optional

from passlib.context import CryptContext


# Contexto para hashing de contraseñas
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Sin caracteres ambiguos (0/O, 1/l/I)
PASSWORD_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
DEFAULT_PASSWORD_LENGTH = 12


class SecurityService:
    """Servicio para operaciones de seguridad."""

    @staticmethod
    def hash_password(password: str) -> str:
        """
        Genera un hash de la contraseña.

        Args:
            password: Contraseña en texto plano

        Returns:
            str: Hash de la contraseña
        """
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """
        Verifica si una contraseña coincide con su hash.

        Args:
            plain_password: Contraseña en texto plano
            hashed_password: Hash de la contraseña

        Returns:
            bool: True si coinciden, False en caso contrario
        """
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def generate_password(length: int = DEFAULT_PASSWORD_LENGTH) -> str:
        """Genera una contraseña aleatoria (CSPRNG) para cuentas nuevas."""
        return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))

    @staticmethod
    def verify_bearer_token(authorization: Optional[str], expected: str) -> bool:
        """
        Compara un header `Authorization: Bearer <token>` con el secreto
        esperado en tiempo constante. Un secreto vacío nunca valida.
        """
        if not expected or not authorization:
            return False
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return False
        return hmac.compare_digest(token.strip(), expected)

    @staticmethod
    def sign_payload(body: bytes, secret: str) -> str:
        """HMAC-SHA256 hex del cuerpo del request."""
        return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    @classmethod
    def verify_webhook_signature(cls, body: bytes, signature: Optional[str], secret: str) -> bool:
        """
        Verifica la firma HMAC-SHA256 de un webhook.

        Acepta la firma en hex, con o sin prefijo "sha256=".
        """
        if not signature:
            return False
        if signature.startswith("sha256="):
            signature = signature[len("sha256="):]
        return hmac.compare_digest(cls.sign_payload(body, secret), signature.strip().lower())

