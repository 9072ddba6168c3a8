"""Issuing and checking HMAC-signed JSON web tokens, and reading user claims."""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

import jwt

INVALID_TOKEN_MESSAGE = "Invalid token"
EXPIRED_TOKEN_MESSAGE = "Token expired"

_ALGORITHM = "HS256"
_ACCEPTED_ALGORITHMS = ["HS256", "HS384", "HS512"]

RULES_VERIFICATION_MAP: dict[str, tuple[str, ...]] = {
    "pernr": ("pernr", "pernr"),
    "nama": ("nama", "nama"),
    "personalArea": ("personalArea", "area"),
    "descPersonalArea": ("descPersonalArea", "descArea"),
    "personalSubarea": ("personalSubarea", "subArea"),
    "descPersonalSubarea": ("descPersonalSubarea", "descSubarea"),
    "costCenter": ("costCenter", "costCenter"),
    "descCostCenter": ("descCostCenter", "descCostCenter"),
    "orgeh": ("organisasiUnit", "orgUnit"),
    "descOrganisasiUnit": ("descOrganisasiUnit", "descOrgUnit"),
    "stell": ("stell", "jabatan"),
    "stellTX": ("stellTX", "descJabatan"),
    "jgpg": ("jgpg", "jgpg"),
    "hilfm": ("hilfm", "groupJabatan"),
    "htext": ("htext", "descGroupJabatan"),
    "branch": ("branchCode", "branch"),
    "jenkel": ("jenkel", "jenisKelamin"),
    "personalAreaPGS": ("personalAreaPGS", "areaPgs"),
    "descPersonalAreaPGS": ("descPersonalAreaPGS", "descAreaPgs"),
    "personalSubareaPGS": ("personalSubareaPGS", "subAreaPgs"),
    "descPersonalSubareaPGS": ("descPersonalSubareaPGS", "descSubAreaPgs"),
    "costCenterPGS": ("costCenterPGS", "costCenterPgs"),
    "descCostCenterPGS": ("descCostCenterPGS", "descCostCenterPgs"),
    "organisasiUnitPGS": ("organisasiUnitPGS", "orgUnitPgs"),
    "descOrganisasiUnitPGS": ("descOrganisasiUnitPGS", "descOrgUnitPgs"),
    "hilfmPGS": ("hilfmPGS", "groupJabatanPgs"),
    "branchCodePGS": ("branchCodePGS", "branchPgs"),
    "htextPGS": ("htextPGS", "descGroupJabatanPgs"),
    "tipePekerja": ("tipePekerja", "tipePekerja"),
}


class UnauthenticatedError(Exception):
    """Raised when a token is missing, malformed, badly signed or expired."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class TokenService:
    """Signs claims with HS256 and verifies tokens; times are Unix seconds.

    ``clock`` returns the current time and is used both for the expiry
    written into new claims and for the expiry check on verification.
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret_key = secret_key
        self.expire_seconds = expire_seconds
        self.clock = clock

    def create_claims(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Copy ``data`` and add an ``exp`` claim ``expire_seconds`` from now."""
        claims = dict(data)
        claims["exp"] = int(self.clock() + self.expire_seconds)
        return claims

    def generate_token(self, claims: Mapping[str, Any]) -> str:
        """Sign ``claims`` and return the compact token."""
        return jwt.encode(dict(claims), self.secret_key, algorithm=_ALGORITHM)

    def verify_token(self, token: str) -> dict[str, Any]:
        """Return the claims of a valid token; raise :class:`UnauthenticatedError` otherwise."""
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=_ACCEPTED_ALGORITHMS)
        except jwt.PyJWTError as exc:
            message = EXPIRED_TOKEN_MESSAGE if "expired" in str(exc) else INVALID_TOKEN_MESSAGE
            raise UnauthenticatedError(message) from exc

        if not isinstance(claims, dict):
            raise UnauthenticatedError(INVALID_TOKEN_MESSAGE)

        expires = claims.get("exp")
        if isinstance(expires, bool) or not isinstance(expires, (int, float)):
            raise UnauthenticatedError(INVALID_TOKEN_MESSAGE)
        if self.clock() > int(expires):
            raise UnauthenticatedError(EXPIRED_TOKEN_MESSAGE)

        return claims


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign, digits, exponent = Decimal(repr(value)).normalize().as_tuple()
    text = "".join(str(d) for d in digits)
    point = len(digits) + exponent
    exp = point - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = text[0] + ("." + text[1:] if len(text) > 1 else "")
        return f"{prefix}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{text}"
    if point >= len(text):
        return f"{prefix}{text}{'0' * (point - len(text))}"
    return f"{prefix}{text[:point]}.{text[point:]}"


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    return str(value)


def fill_result_map_from_claims(claims: Mapping[str, Any]) -> dict[str, str]:
    """Pick the user attributes out of ``claims``, trying each alias in turn."""
    result: dict[str, str] = {}
    for result_key, candidates in RULES_VERIFICATION_MAP.items():
        for claim_key in candidates:
            value = claims.get(claim_key)
            if value is None:
                continue
            text = _format_value(value)
            if text:
                result[result_key] = text
                break
    return result