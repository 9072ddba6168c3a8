import base64
import re

import pytest

from permen import encryptor
from permen.encryptor import EncryptionError, Encryptor

_BASE64 = re.compile(r"[A-Za-z0-9+/=]+")
_NONCE_SIZE = 12
_TAG_SIZE = 16


def make_key(length):
    return ("placeholder" * 3)[:length]


@pytest.fixture
def enc():
    return Encryptor(make_key(16))


@pytest.fixture
def restore_global(monkeypatch):
    monkeypatch.setattr(encryptor, "_global_encryptor", encryptor._global_encryptor)


@pytest.mark.parametrize("length", [16, 24, 32])
def test_valid_key_lengths_round_trip(length):
    e = Encryptor(make_key(length))
    assert e.decrypt(e.encrypt("hello")) == "hello"


@pytest.mark.parametrize("length", [15, 17, 0])
def test_invalid_key_lengths(length):
    with pytest.raises(EncryptionError, match="key length must be 16, 24, or 32 bytes"):
        Encryptor(make_key(length))


def test_bytes_key_accepted():
    e = Encryptor(make_key(16).encode())
    assert e.decrypt(e.encrypt("data")) == "data"


@pytest.mark.parametrize(
    "plaintext",
    [
        "Hello, World!",
        "",
        "a" * 10000,
        "こんにちは世界🔐",
        "!@#$%^&*()_+-=[]{}|;':\",./<>?`~\n\t",
    ],
)
def test_encrypt_produces_base64(enc, plaintext):
    encrypted = enc.encrypt(plaintext)
    assert _BASE64.fullmatch(encrypted) is not None
    raw = base64.b64decode(encrypted, validate=True)
    assert len(raw) == _NONCE_SIZE + len(plaintext.encode("utf-8")) + _TAG_SIZE


@pytest.mark.parametrize(
    "plaintext",
    ["Hello, World!", "", '{"key": "value", "number": 123}', "测试数据🔒"],
)
def test_decrypt_round_trip(enc, plaintext):
    assert enc.decrypt(enc.encrypt(plaintext)) == plaintext


@pytest.mark.parametrize("value", ["not-valid-base64!!!", "YWJj", ""])
def test_decrypt_invalid_input(enc, value):
    with pytest.raises(EncryptionError):
        enc.decrypt(value)


def test_decrypt_too_short_message(enc):
    with pytest.raises(EncryptionError, match="ciphertext too short"):
        enc.decrypt("YWJj")


def test_decrypt_with_wrong_key_fails(enc):
    encrypted = enc.encrypt("payload")
    other = Encryptor(make_key(24))
    with pytest.raises(EncryptionError):
        other.decrypt(encrypted)


def test_decrypt_tampered_ciphertext_fails(enc):
    encrypted = enc.encrypt("payload")
    tampered = ("A" if encrypted[20] != "A" else "B").join(
        [encrypted[:20], encrypted[21:]]
    )
    with pytest.raises(EncryptionError):
        enc.decrypt(tampered)


@pytest.mark.parametrize(
    "data",
    [
        {"Name": "John"},
        {"key": "value", "num": 123},
        ["a", "b", "c"],
        {"Inner": {"Value": 42}},
        None,
    ],
)
def test_encrypt_json_round_trip(enc, data):
    encrypted = enc.encrypt_json(data)
    assert encrypted != ""
    assert enc.decrypt_to_json(encrypted) == data


def test_encrypt_json_compact(enc):
    encrypted = enc.encrypt_json({"a": 1, "b": [1, 2]})
    assert enc.decrypt(encrypted) == '{"a":1,"b":[1,2]}'


def test_encrypt_json_unserialisable(enc):
    with pytest.raises(EncryptionError, match="failed to marshal data to JSON"):
        enc.encrypt_json({"value": object()})


@pytest.mark.parametrize("json_string", ['{"name": "John", "age": 30}', "[1, 2, 3]"])
def test_encrypt_json_string_valid(enc, json_string):
    encrypted = enc.encrypt_json_string(json_string)
    assert enc.decrypt(encrypted) == json_string


@pytest.mark.parametrize("json_string", ["not valid json", ""])
def test_encrypt_json_string_invalid(enc, json_string):
    with pytest.raises(EncryptionError, match="invalid JSON string"):
        enc.encrypt_json_string(json_string)


def test_decrypt_to_json_struct_like(enc):
    original = {"name": "test", "value": 42}
    assert enc.decrypt_to_json(enc.encrypt_json(original)) == original


def test_decrypt_to_json_not_json(enc):
    with pytest.raises(EncryptionError, match="failed to unmarshal JSON"):
        enc.decrypt_to_json(enc.encrypt("plain text"))


def test_decrypt_to_json_bad_input(enc):
    with pytest.raises(EncryptionError, match="failed to decrypt data"):
        enc.decrypt_to_json("YWJj")


def test_decrypt_to_json_string(enc):
    original = '{"key":"value"}'
    assert enc.decrypt_to_json_string(enc.encrypt_json_string(original)) == original


def test_decrypt_to_json_string_not_json(enc):
    with pytest.raises(EncryptionError, match="decrypted data is not valid JSON"):
        enc.decrypt_to_json_string(enc.encrypt("plain text"))


def test_global_encrypt_decrypt(restore_global):
    assert encryptor.decrypt(encryptor.encrypt("test data")) == "test data"


def test_global_json_round_trip(restore_global):
    encrypted = encryptor.encrypt_json({"key": "value"})
    assert encryptor.decrypt_to_json(encrypted) == {"key": "value"}


def test_global_json_string_round_trip(restore_global):
    json_str = '{"test": true}'
    encrypted = encryptor.encrypt_json_string(json_str)
    assert encryptor.decrypt_to_json_string(encrypted) == json_str


def test_init_global_encryptor_valid(restore_global):
    encrypted = encryptor.encrypt("before")
    encryptor.init_global_encryptor(make_key(16)[::-1])
    with pytest.raises(EncryptionError):
        encryptor.decrypt(encrypted)
    assert encryptor.decrypt(encryptor.encrypt("after")) == "after"


def test_init_global_encryptor_invalid_keeps_previous(restore_global):
    encrypted = encryptor.encrypt("kept")
    with pytest.raises(EncryptionError):
        encryptor.init_global_encryptor("secret")
    assert encryptor.decrypt(encrypted) == "kept"


def test_encrypt_uniqueness(enc):
    first = enc.encrypt("same text")
    second = enc.encrypt("same text")
    assert first != second
    assert enc.decrypt(first) == enc.decrypt(second) == "same text"