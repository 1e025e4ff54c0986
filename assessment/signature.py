"""Request signing for the coordinator protocol.

A signature covers ``<prefix>-<service_name>-<sha256(json(payload))>`` so it is bound both to the
caller's identity and to the exact payload that was sent.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

DEFAULT_PREFIX = "educoreai"


def canonical_json(payload: Any) -> str:
    # Compact separators and insertion ordered keys, same bytes the HTTP body carries.
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def build_message(service_name: str, payload: Any = None, prefix: str = DEFAULT_PREFIX) -> str:
    message = f"{prefix}-{service_name}"
    if payload is not None:
        digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
        message = f"{message}-{digest}"
    return message


def _pem_bytes(pem: str) -> bytes:
    # Keys passed through env vars often carry escaped newlines.
    return pem.replace("\\n", "\n").strip().encode("utf-8")


def generate_signature(
    service_name: str, private_key_pem: str, payload: Any = None, prefix: str = DEFAULT_PREFIX
) -> str:
    if not service_name or not private_key_pem:
        raise ValueError("Missing service_name or private key for signature")

    key = serialization.load_pem_private_key(_pem_bytes(private_key_pem), password=None)
    message = build_message(service_name, payload, prefix).encode("utf-8")

    if isinstance(key, ec.EllipticCurvePrivateKey):
        raw = key.sign(message, ec.ECDSA(hashes.SHA256()))
    elif isinstance(key, rsa.RSAPrivateKey):
        raw = key.sign(message, padding.PKCS1v15(), hashes.SHA256())
    else:
        raise ValueError(f"Unsupported private key type: {type(key).__name__}")
    return base64.b64encode(raw).decode("ascii")


def verify_signature(
    service_name: str,
    signature: str | None,
    public_key_pem: str | None,
    payload: Any = None,
    prefix: str = DEFAULT_PREFIX,
) -> bool:
    if not service_name or not signature or not public_key_pem:
        return False

    try:
        key = serialization.load_pem_public_key(_pem_bytes(public_key_pem))
        raw = base64.b64decode(signature, validate=True)
    except (ValueError, binascii.Error):
        return False

    message = build_message(service_name, payload, prefix).encode("utf-8")
    try:
        if isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(raw, message, ec.ECDSA(hashes.SHA256()))
        elif isinstance(key, rsa.RSAPublicKey):
            key.verify(raw, message, padding.PKCS1v15(), hashes.SHA256())
        else:
            return False
    except InvalidSignature:
        return False
    return True
