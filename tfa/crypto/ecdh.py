"""ECDH P-256 key agreement and AES-256-GCM token envelopes.

Envelope wire format: ``base64(IV[12] || Tag[16] || Ciphertext)``. The AES key
is the raw 32-byte ECDH shared secret; no KDF is applied, so both sides must
agree on this exact derivation.
"""

import base64
import binascii
import os
import re

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32
MIN_ENVELOPE_LENGTH = IV_LENGTH + TAG_LENGTH

_WHITESPACE = re.compile(r"\s+")


class EnvelopeError(ValueError):
    """Raised when keys cannot be imported or an envelope cannot be opened."""


def normalize_base64(value: str) -> str:
    """Convert base64url or unpadded input to padded standard base64."""
    cleaned = _WHITESPACE.sub("", value).replace("-", "+").replace("_", "/")
    return cleaned + "=" * (-len(cleaned) % 4)


def _b64decode(value: str) -> bytes:
    try:
        return base64.b64decode(normalize_base64(value), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EnvelopeError(f"Invalid base64 data: {exc}") from exc


def generate_keypair() -> ec.EllipticCurvePrivateKey:
    """Generate a fresh P-256 private key."""
    return ec.generate_private_key(ec.SECP256R1())


def export_public_key(key: ec.EllipticCurvePrivateKey | ec.EllipticCurvePublicKey) -> str:
    """Export a public key as base64 SPKI DER."""
    public = key.public_key() if isinstance(key, ec.EllipticCurvePrivateKey) else key
    der = public.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode()


def export_private_key(key: ec.EllipticCurvePrivateKey) -> str:
    """Export a private key as base64 PKCS#8 DER."""
    der = key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(der).decode()


def export_private_key_pem(key: ec.EllipticCurvePrivateKey) -> str:
    """Export a private key as PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def _require_p256(key: object) -> None:
    curve = getattr(key, "curve", None)
    if not isinstance(curve, ec.SECP256R1):
        raise EnvelopeError("Key is not a P-256 elliptic curve key")


def import_public_key(value: str) -> ec.EllipticCurvePublicKey:
    """Load a P-256 public key from base64 SPKI DER or PEM."""
    try:
        if "-----BEGIN" in value:
            key = serialization.load_pem_public_key(value.replace("\\n", "\n").encode())
        else:
            key = serialization.load_der_public_key(_b64decode(value))
    except EnvelopeError:
        raise
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise EnvelopeError(f"Failed to import public key: {exc}") from exc
    _require_p256(key)
    assert isinstance(key, ec.EllipticCurvePublicKey)
    return key


def import_private_key(value: str) -> ec.EllipticCurvePrivateKey:
    """Load a P-256 private key from PEM or base64 PKCS#8 DER."""
    try:
        if "-----BEGIN" in value:
            pem = value.replace("\\n", "\n").strip().encode()
            key = serialization.load_pem_private_key(pem, password=None)
        else:
            key = serialization.load_der_private_key(_b64decode(value), password=None)
    except EnvelopeError:
        raise
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise EnvelopeError(f"Failed to import private key: {exc}") from exc
    _require_p256(key)
    assert isinstance(key, ec.EllipticCurvePrivateKey)
    return key


def derive_shared_key(
    private_key: ec.EllipticCurvePrivateKey | str,
    peer_public_key: ec.EllipticCurvePublicKey | str,
) -> bytes:
    """Compute the 32-byte AES key both parties derive from one ECDH exchange."""
    if isinstance(private_key, str):
        private_key = import_private_key(private_key)
    if isinstance(peer_public_key, str):
        peer_public_key = import_public_key(peer_public_key)
    shared = private_key.exchange(ec.ECDH(), peer_public_key)
    return shared[:KEY_LENGTH]


def encrypt(plaintext: str, shared_key: bytes) -> str:
    """Seal plaintext into a base64 IV||Tag||Ciphertext envelope."""
    if len(shared_key) != KEY_LENGTH:
        raise EnvelopeError(f"Shared key must be {KEY_LENGTH} bytes")
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(shared_key).encrypt(iv, plaintext.encode(), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode()


def decrypt(envelope: str, shared_key: bytes) -> str:
    """Open an envelope; any tampering, truncation or wrong key raises."""
    if len(shared_key) != KEY_LENGTH:
        raise EnvelopeError(f"Shared key must be {KEY_LENGTH} bytes")
    raw = _b64decode(envelope)
    if len(raw) < MIN_ENVELOPE_LENGTH:
        raise EnvelopeError(
            f"Envelope too short: {len(raw)} bytes, need at least {MIN_ENVELOPE_LENGTH}"
        )
    iv = raw[:IV_LENGTH]
    tag = raw[IV_LENGTH:MIN_ENVELOPE_LENGTH]
    ciphertext = raw[MIN_ENVELOPE_LENGTH:]
    try:
        plaintext = AESGCM(shared_key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise EnvelopeError("Authentication tag mismatch") from exc
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EnvelopeError("Decrypted payload is not valid UTF-8") from exc


def encrypt_for_peer(
    plaintext: str,
    private_key: ec.EllipticCurvePrivateKey | str,
    peer_public_key: ec.EllipticCurvePublicKey | str,
) -> str:
    """Derive the shared key with the peer and seal plaintext for it."""
    return encrypt(plaintext, derive_shared_key(private_key, peer_public_key))


def decrypt_from_peer(
    envelope: str,
    private_key: ec.EllipticCurvePrivateKey | str,
    peer_public_key: ec.EllipticCurvePublicKey | str,
) -> str:
    """Derive the shared key with the peer and open its envelope."""
    return decrypt(envelope, derive_shared_key(private_key, peer_public_key))
