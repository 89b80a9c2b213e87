import pytest

from zoho_connector.services.token_cipher import TokenCipher, TokenDecryptionError


def test_token_cipher_roundtrip() -> None:
    cipher = TokenCipher(secret="super-secret-key")
    plaintext = "1000.zoho-access-token"

    encrypted = cipher.encrypt(plaintext)
    assert encrypted != plaintext
    assert cipher.decrypt(encrypted) == plaintext


def test_token_cipher_rejects_bad_ciphertext() -> None:
    cipher = TokenCipher(secret="another-secret")

    with pytest.raises(TokenDecryptionError, match="TOKEN_ENCRYPTION_SECRET"):
        cipher.decrypt("not-valid")


def test_token_cipher_requires_secret() -> None:
    with pytest.raises(ValueError):
        TokenCipher(secret="")
