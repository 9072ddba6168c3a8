"""AES-GCM encryption of text and JSON payloads, encoded as base64."""

from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_SIZE = 12
_VALID_KEY_SIZES = (16, 24, 32)
_DEFAULT_KEY = "placeholder".ljust(16, "-")


class EncryptionError(ValueError):
    """Raised when a key is invalid or data cannot be encrypted or decrypted."""


class Encryptor:
    """Encrypts and decrypts strings with AES-GCM using a random nonce per message."""

    def __init__(self, key: str | bytes) -> None:
        key_bytes = key.encode("utf-8") if isinstance(key, str) else bytes(key)
        if len(key_bytes) not in _VALID_KEY_SIZES:
            raise EncryptionError("key length must be 16, 24, or 32 bytes")
        self._aead = AESGCM(key_bytes)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt text; the result is base64 of nonce followed by ciphertext."""
        nonce = os.urandom(_NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, encrypted_data: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`."""
        try:
            data = base64.b64decode(encrypted_data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise EncryptionError(f"failed to decode base64: {exc}") from exc

        if len(data) < _NONCE_SIZE:
            raise EncryptionError("ciphertext too short")

        nonce, ciphertext = data[:_NONCE_SIZE], data[_NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise EncryptionError("failed to decrypt: message authentication failed") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncryptionError(f"failed to decrypt: {exc}") from exc

    def encrypt_json(self, data: Any) -> str:
        """Serialise ``data`` to JSON and encrypt it."""
        try:
            text = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"failed to marshal data to JSON: {exc}") from exc
        return self.encrypt(text)

    def encrypt_json_string(self, json_string: str) -> str:
        """Encrypt a string after checking that it holds valid JSON."""
        try:
            json.loads(json_string)
        except ValueError as exc:
            raise EncryptionError(f"invalid JSON string: {exc}") from exc
        return self.encrypt(json_string)

    def decrypt_to_json(self, encrypted_data: str) -> Any:
        """Decrypt and parse the JSON document inside."""
        try:
            decrypted = self.decrypt(encrypted_data)
        except EncryptionError as exc:
            raise EncryptionError(f"failed to decrypt data: {exc}") from exc
        try:
            return json.loads(decrypted)
        except ValueError as exc:
            raise EncryptionError(f"failed to unmarshal JSON: {exc}") from exc

    def decrypt_to_json_string(self, encrypted_data: str) -> str:
        """Decrypt and return the JSON text, checking that it is valid JSON."""
        try:
            decrypted = self.decrypt(encrypted_data)
        except EncryptionError as exc:
            raise EncryptionError(f"failed to decrypt data: {exc}") from exc
        try:
            json.loads(decrypted)
        except ValueError as exc:
            raise EncryptionError(f"decrypted data is not valid JSON: {exc}") from exc
        return decrypted


_global_encryptor = Encryptor(_DEFAULT_KEY)


def init_global_encryptor(key: str | bytes) -> None:
    """Replace the shared encryptor with one using ``key``."""
    global _global_encryptor
    _global_encryptor = Encryptor(key)


def encrypt(plaintext: str) -> str:
    """Encrypt text with the shared encryptor."""
    return _global_encryptor.encrypt(plaintext)


def decrypt(encrypted_data: str) -> str:
    """Decrypt text with the shared encryptor."""
    return _global_encryptor.decrypt(encrypted_data)


def encrypt_json(data: Any) -> str:
    """Encrypt ``data`` as JSON with the shared encryptor."""
    return _global_encryptor.encrypt_json(data)


def encrypt_json_string(json_string: str) -> str:
    """Encrypt a JSON string with the shared encryptor."""
    return _global_encryptor.encrypt_json_string(json_string)


def decrypt_to_json(encrypted_data: str) -> Any:
    """Decrypt and parse JSON with the shared encryptor."""
    return _global_encryptor.decrypt_to_json(encrypted_data)


def decrypt_to_json_string(encrypted_data: str) -> str:
    """Decrypt to a JSON string with the shared encryptor."""
    return _global_encryptor.decrypt_to_json_string(encrypted_data)