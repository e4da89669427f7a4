"""
Broadcast Token Vault
=====================
AES-GCM encryption of platform token sets at rest.

TOKEN_ENC_KEYS format:
  v1:BASE64_32_BYTES_KEY,v2:BASE64_32_BYTES_KEY
Newest is last and is used to encrypt. Older keys stay to decrypt.
"""

import base64
import json
import logging
import secrets
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from . import config

logger = logging.getLogger("broadcast")

ENC_KEYS: Dict[str, bytes] = {}
CURRENT_KEY_ID = "v1"


def parse_enc_keys(raw: Optional[str] = None) -> Dict[str, bytes]:
    raw = config.TOKEN_ENC_KEYS if raw is None else raw
    if not raw:
        raise RuntimeError("TOKEN_ENC_KEYS is required")

    keys: Dict[str, bytes] = {}
    clean = raw.strip().strip('"').replace("\\n", "")
    parts = [p.strip() for p in clean.split(",") if p.strip()]

    for part in parts:
        if ":" not in part:
            continue
        kid, b64key = part.split(":", 1)
        key = base64.b64decode(b64key.strip())
        if len(key) != 32:
            raise RuntimeError(f"TOKEN_ENC_KEYS invalid: {kid} must decode to 32 bytes")
        keys[kid.strip()] = key

    if not keys:
        raise RuntimeError("TOKEN_ENC_KEYS parsed empty/invalid; fix env var.")

    def _ver(k: str) -> int:
        try:
            return int(k.lstrip("v"))
        except ValueError:
            return 0

    ordered = sorted(keys.keys(), key=_ver)
    return {k: keys[k] for k in ordered}


def init_enc_keys(raw: Optional[str] = None):
    global ENC_KEYS, CURRENT_KEY_ID
    ENC_KEYS = parse_enc_keys(raw)
    CURRENT_KEY_ID = list(ENC_KEYS.keys())[-1]
    logger.info(f"Token vault ready (keys={list(ENC_KEYS.keys())}, current={CURRENT_KEY_ID})")


def encrypt_blob(data: dict) -> dict:
    key = ENC_KEYS[CURRENT_KEY_ID]
    aesgcm = AESGCM(key)
    nonce = secrets.token_bytes(12)
    plaintext = json.dumps(data).encode("utf-8")
    ciphertext = aesgcm.encrypt(nonce, plaintext, None)
    return {
        "kid": CURRENT_KEY_ID,
        "nonce": base64.b64encode(nonce).decode("utf-8"),
        "data": base64.b64encode(ciphertext).decode("utf-8"),
    }


def decrypt_blob(blob: Any) -> dict:
    if isinstance(blob, str):
        blob = json.loads(blob)

    kid = blob.get("kid", CURRENT_KEY_ID)
    if kid not in ENC_KEYS:
        raise ValueError(f"Unknown key ID: {kid}")
    aesgcm = AESGCM(ENC_KEYS[kid])
    nonce = base64.b64decode(blob["nonce"])
    ciphertext = base64.b64decode(blob["data"])
    plaintext = aesgcm.decrypt(nonce, ciphertext, None)
    return json.loads(plaintext)
