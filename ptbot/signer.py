"""API signer key — reads the Fordefi API-signer private key (PEM) and signs requests."""

import base64
from pathlib import Path

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec


def load_private_key(key_path: str) -> ec.EllipticCurvePrivateKey:
    resolved = Path(key_path).expanduser().resolve()
    if not resolved.exists():
        raise FileNotFoundError(f"API signer key not found: {resolved}")

    key = serialization.load_pem_private_key(resolved.read_bytes(), password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ValueError(f"API signer key must be an EC private key: {resolved}")
    return key


def sign_payload(payload: str, key: ec.EllipticCurvePrivateKey) -> str:
    """ECDSA/SHA-256 signature (DER), base64 encoded."""
    der = key.sign(payload.encode(), ec.ECDSA(hashes.SHA256()))
    return base64.b64encode(der).decode()
