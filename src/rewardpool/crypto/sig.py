# src/rewardpool/crypto/sig.py
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

Json = Dict[str, Any]

PUBKEY_HEX_LEN = 64


def _decode_bytes(s: str) -> bytes:
    """Hex first, then base64 / base64url."""
    s = str(s or "").strip()
    if not s:
        raise ValueError("empty key material")
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    padded = s + "=" * (-len(s) % 4)
    try:
        return base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)
    except binascii.Error as e:
        raise ValueError("not hex or base64") from e


def is_pubkey_hex(s: Any) -> bool:
    """Account ids in signed mode are raw ed25519 public keys, hex encoded."""
    if not isinstance(s, str) or len(s.strip()) != PUBKEY_HEX_LEN:
        return False
    try:
        bytes.fromhex(s.strip())
    except ValueError:
        return False
    return True


def _private_key(privkey: str) -> Ed25519PrivateKey:
    raw = _decode_bytes(privkey)
    # 64-byte keys are seed || pubkey.
    if len(raw) == 64:
        raw = raw[:32]
    if len(raw) != 32:
        raise ValueError("ed25519 privkey must be a 32-byte seed (or 64-byte expanded key)")
    return Ed25519PrivateKey.from_private_bytes(raw)


def pubkey_hex_for(privkey: str) -> str:
    """The account id (public key hex) controlled by `privkey`."""
    pub = _private_key(privkey).public_key()
    return pub.public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def canonical_request_message(
    *,
    method: str,
    path: str,
    account: str,
    nonce: int,
    body: Optional[Json] = None,
) -> bytes:
    """Bytes a caller signs to prove control of `account` for one API request.

    Sorted keys and compact separators so client and server agree byte for byte
    regardless of how the body dict was built.
    """
    obj: Json = {
        "method": str(method).upper(),
        "path": str(path),
        "account": str(account),
        "nonce": int(nonce),
        "body": body if isinstance(body, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        key = Ed25519PublicKey.from_public_bytes(_decode_bytes(pubkey))
        key.verify(_decode_bytes(sig), message)
    except (InvalidSignature, ValueError):
        return False
    return True


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign `message`; encoding is "hex" (default) or "b64"."""
    sig = _private_key(privkey).sign(message)
    if encoding == "hex":
        return sig.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig).decode("ascii")
    raise ValueError(f"unsupported encoding: {encoding!r}")


def sign_request(
    *,
    privkey: str,
    method: str,
    path: str,
    nonce: int,
    body: Optional[Json] = None,
) -> Json:
    """Client side: the account, nonce and signature for one request."""
    account = pubkey_hex_for(privkey)
    msg = canonical_request_message(method=method, path=path, account=account, nonce=nonce, body=body)
    return {"account": account, "nonce": int(nonce), "sig": sign_ed25519(message=msg, privkey=privkey)}


def verify_request(
    *,
    method: str,
    path: str,
    account: str,
    nonce: int,
    body: Optional[Json],
    sig: str,
) -> bool:
    """Server side: does `sig` bind this request to `account`?"""
    if not is_pubkey_hex(account):
        return False
    msg = canonical_request_message(method=method, path=path, account=account, nonce=nonce, body=body)
    return verify_ed25519_signature(message=msg, sig=sig, pubkey=account)
