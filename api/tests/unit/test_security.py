"""
Tests unitarios para SecurityService (hash, contraseñas, tokens y firmas).
"""
import pytest

from app.core.security import PASSWORD_ALPHABET, SecurityService


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = SecurityService.hash_password("clave-segura")

        assert hashed != "clave-segura"
        assert SecurityService.verify_password("clave-segura", hashed) is True
        assert SecurityService.verify_password("otra", hashed) is False

    def test_generate_password(self) -> None:
        first = SecurityService.generate_password()
        second = SecurityService.generate_password(20)

        assert len(first) == 12
        assert len(second) == 20
        assert set(first + second) <= set(PASSWORD_ALPHABET)
        assert first != SecurityService.generate_password()


class TestBearerToken:
    @pytest.mark.parametrize(
        "authorization,expected,valid",
        [
            ("Bearer secreto", "secreto", True),
            ("bearer secreto", "secreto", True),
            ("Bearer otro", "secreto", False),
            ("Basic secreto", "secreto", False),
            ("Bearer", "secreto", False),
            (None, "secreto", False),
            ("Bearer ", "", False),
        ],
    )
    def test_verify_bearer_token(self, authorization, expected, valid) -> None:
        assert SecurityService.verify_bearer_token(authorization, expected) is valid


class TestWebhookSignature:
    BODY = b'{"table": "forms"}'

    def test_signature_with_and_without_prefix(self) -> None:
        signature = SecurityService.sign_payload(self.BODY, "s3")

        assert SecurityService.verify_webhook_signature(self.BODY, signature, "s3") is True
        assert SecurityService.verify_webhook_signature(self.BODY, f"sha256={signature}", "s3") is True
        assert SecurityService.verify_webhook_signature(self.BODY, signature.upper(), "s3") is True

    def test_invalid_signature(self) -> None:
        signature = SecurityService.sign_payload(self.BODY, "s3")

        assert SecurityService.verify_webhook_signature(b"{}", signature, "s3") is False
        assert SecurityService.verify_webhook_signature(self.BODY, signature, "otro") is False
        assert SecurityService.verify_webhook_signature(self.BODY, None, "s3") is False
