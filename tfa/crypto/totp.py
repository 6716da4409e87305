"""RFC 6238 time-based one-time passwords."""

import base64
import binascii
import hashlib
import hmac
import secrets
import struct
import time

TOTP_PERIOD = 30
TOTP_DIGITS = 6
TOTP_SKEW = 1


def generate_secret() -> str:
    """Random 160-bit base32 secret without padding."""
    return base64.b32encode(secrets.token_bytes(20)).decode().rstrip("=")


def decode_secret(secret: str) -> bytes:
    """Decode a base32 secret that may be unpadded, spaced or lowercase."""
    s = secret.strip().replace(" ", "").upper()
    pad = "=" * ((8 - (len(s) % 8)) % 8)
    return base64.b32decode(s + pad, casefold=True)


def hotp(key: bytes, counter: int, digits: int = TOTP_DIGITS) -> str:
    """HMAC-SHA1 one-time code for counter."""
    hm = hmac.new(key, struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = hm[-1] & 0x0F
    dbc = int.from_bytes(hm[offset : offset + 4], "big") & 0x7FFFFFFF
    return str(dbc % (10**digits)).zfill(digits)


def generate_code(secret: str, now: float | None = None) -> str:
    """Current code for secret."""
    ts = int(now if now is not None else time.time()) // TOTP_PERIOD
    return hotp(decode_secret(secret), ts)


def verify_code(
    secret: str,
    code: str,
    *,
    skew: int = TOTP_SKEW,
    now: float | None = None,
) -> bool:
    """Accept code within +/- skew time steps of now."""
    code = code.strip() if code else ""
    if not code.isdigit() or len(code) != TOTP_DIGITS:
        return False
    try:
        key = decode_secret(secret)
    except (binascii.Error, ValueError):
        return False
    ts = int(now if now is not None else time.time()) // TOTP_PERIOD
    return any(
        hmac.compare_digest(hotp(key, ts + off), code)
        for off in range(-skew, skew + 1)
    )
