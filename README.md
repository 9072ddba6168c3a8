# permen

Small, dependable pieces for building a JSON web API in Python:

- **`permen.encryptor`**: AES-GCM encryption of strings and JSON payloads,
  base64-encoded for transport, with a module-level default encryptor.
- **`permen.cache`**: a thread-safe, sharded, in-memory LRU cache with
  per-item sizes, TTLs and an optional background cleanup thread.
- **`permen.binder`**: binds JSON bodies, URI parameters, query strings and
  multipart forms onto dataclasses, copying only the fields the class declares.
- **`permen.transport`**: a REST client built on `requests`, with JSON and
  multipart bodies, query parameters and classified network errors.
- **`permen.storage`**: HTTP `Range` header validation and the status and
  headers needed to serve a stored object as a download or an inline preview.
- **`permen.tokens`**: HS256 JSON Web Tokens with an expiry, and mapping of
  employee claims to a flat dictionary.

## Installation

```
pip install permen
```

To run the test suite:

```
pip install "permen[test]"
pytest
```

## Encrypting payloads

```python
import os
from permen.encryptor import Encryptor, EncryptionError

# AES keys must be 16, 24 or 32 bytes long.
encryptor = Encryptor(os.environ["PERMEN_AES_KEY"])

sealed = encryptor.encrypt_json({"pernr": "00000000", "nama": "Example"})
payload = encryptor.decrypt_to_json(sealed)

try:
    encryptor.decrypt("not-valid-base64!!!")
except EncryptionError as exc:
    print("rejected:", exc)
```

Each call to `encrypt` uses a fresh random nonce, so the same plaintext gives a
different ciphertext every time. The module also offers `encrypt`, `decrypt`,
`encrypt_json`, `encrypt_json_string`, `decrypt_to_json` and
`decrypt_to_json_string` as plain functions backed by a default encryptor;
call `init_global_encryptor(key)` to switch that default to your own key.

## Caching

```python
from permen.cache import Cache

cache = Cache(max_size_bytes=1024 * 1024, num_shards=16,
              default_expiration=60, cleanup_interval=30)

cache.set("profile:42", {"name": "Example"}, 128, 300)
cache.get("profile:42")      # raises KeyError when missing or expired
cache.delete("profile:42")

cache.stop()  # ends the background cleanup thread
```

Durations are in seconds. Each shard holds an equal part of `max_size_bytes`;
when a shard grows past its share, the least recently used items are evicted
first. Expired items are dropped when read, by `delete_expired()`, or by the
cleanup thread. `Cache` can also be used as a context manager, which calls
`stop()` on exit, and `len(cache)` counts the stored items.

## Binding requests

```python
from dataclasses import dataclass
from permen.binder import BindError, bind_json, bind_query

@dataclass
class CreateUser:
    name: str = ""
    age: int = 0
    active: bool = False

user = bind_json(CreateUser, b'{"name": "John", "age": 30, "admin": true}')
# Fields the dataclass does not declare ("admin") are ignored.

@dataclass
class Page:
    page: int = 0
    limit: int = 0

page = bind_query(Page, {"page": "2", "limit": "10"})  # or "page=2&limit=10"

try:
    bind_json(CreateUser, b"")
except BindError as exc:
    print(exc)  # request body is empty
```

A field's request name comes from its `json`, `uri` or `form` metadata, or
from the lower-cased field name. `bind_uri`, `bind_multipart_form` and
`bind_multipart_json` work the same way; uploaded files arrive as
`UploadedFile` objects.

## Calling other services

```python
from permen.transport import RestClient, RequestOptions, TransportError, get_error_details

client = RestClient("https://api.example.com", 10)

try:
    body, status, headers = client.get("/users", RequestOptions(query_params={"page": "1"}))
except TransportError as exc:
    print(get_error_details(exc))
```

Failures are raised as `RequestTimeoutError`, `ConnectionFailedError`,
`DNSResolutionError` or `RequestFailedError`, and responses with a status of
400 or above as `HTTPStatusError`; `is_timeout_error`, `is_connection_error`
and `is_dns_error` classify any exception. Requests and responses are logged
at debug level through the `logging` module while `client.debug` is true.

## Streaming stored objects

```python
from permen.storage import RangeError, plan_stream, validate_range

byte_range = validate_range("bytes=0-1023", 8192)

plan = plan_stream("reports/summary.pdf", 10_000, "application/pdf",
                   "bytes=0-1023", "inline", "")
```

`plan_stream` returns a `StreamPlan` describing the status code, headers
(`Content-Range`, `Content-Length`, `Content-Disposition`, ...) and byte span
for a full, partial or unsatisfiable response. Malformed `Range` headers raise
`RangeError`. `resolve_disposition` normalises the disposition to `inline` or
`attachment`, and `sanitize_filename` replaces line breaks in file names
placed in headers.

## Tokens

```python
from permen.tokens import TokenService, UnauthenticatedError, fill_result_map_from_claims

service = TokenService(secret_key="secret", expire_seconds=7200)

claims = service.create_claims({"pernr": "00000000", "nama": "Example"})
signed = service.generate_token(claims)

try:
    verified = service.verify_token(signed)
    profile = fill_result_map_from_claims(verified)
except UnauthenticatedError as exc:
    print(exc)  # "Invalid token" or "Token expired"
```

## What is not included

`permen` is a library of parts, not a running service. It has no HTTP server
or routing, no command-line program, no database access and no object-storage
client: `permen.storage` only decides how an object should be served, and the
bytes themselves must come from your own storage code.