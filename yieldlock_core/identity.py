"""
Caller identities and authorization for YieldLock.

An identity is a secp256k1 key pair.  Its address is derived from the
uncompressed public key:

    address = "y" + hex(RIPEMD160(SHA256(0x04 || X || Y)))

Signed calls carry a JSON payload, the signer's public key and a DER
signature over ``SHA256(canonical_json(payload))``.  The ``Authorizer``
verifies the signature, checks that ``payload["caller"]`` is the signer's
address, enforces a strictly increasing per-caller ``nonce`` and gates the
privileged reserve-withdrawal operation.
"""

from __future__ import annotations

import hashlib
import json
import os
import threading
from typing import Any

from Crypto.Hash import RIPEMD160
from ecdsa import BadSignatureError, MalformedPointError, SECP256k1, SigningKey, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.keys import BadDigestError
from ecdsa.util import sigdecode_der, sigencode_der

from yieldlock_core.errors import PermissionDenied

ADDRESS_PREFIX = "y"


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


def derive_address(public_key: bytes) -> str:
    """Address for a 65-byte uncompressed (or 64-byte raw) public key."""
    if len(public_key) == 64:
        public_key = b"\x04" + public_key
    return ADDRESS_PREFIX + hash160(public_key).hex()


def canonical_json(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def payload_digest(payload: dict[str, Any]) -> bytes:
    return hashlib.sha256(canonical_json(payload)).digest()


class Identity:
    """A signing key pair bound to a YieldLock address."""

    def __init__(self, private_key: bytes):
        self._sk = SigningKey.from_string(private_key, curve=SECP256k1)
        self.public_key: bytes = b"\x04" + self._sk.get_verifying_key().to_string()
        self.address: str = derive_address(self.public_key)

    @classmethod
    def create(cls) -> Identity:
        return cls(SigningKey.generate(curve=SECP256k1).to_string())

    @classmethod
    def from_seed(cls, seed: str) -> Identity:
        """Deterministic identity from a seed string (tests, dev nodes)."""
        raw = int.from_bytes(hashlib.sha256(seed.encode("utf-8")).digest(), "big")
        secret = raw % (SECP256k1.order - 1) + 1
        return cls(secret.to_bytes(32, "big"))

    @classmethod
    def from_key_file(cls, path: str) -> Identity:
        """Load a hex private key from *path*, generating one on first use."""
        if os.path.exists(path):
            with open(path) as f:
                return cls(bytes.fromhex(f.read().strip()))
        ident = cls.create()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w") as f:
            f.write(ident._sk.to_string().hex())
        os.chmod(path, 0o600)
        return ident

    def sign(self, payload: dict[str, Any]) -> str:
        """Hex DER signature over the canonical payload digest."""
        sig = self._sk.sign_digest_deterministic(
            payload_digest(payload), hashfunc=hashlib.sha256, sigencode=sigencode_der,
        )
        return sig.hex()

    def signed_call(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Payload plus ``public_key`` and ``signature`` fields, ready to POST."""
        body = dict(payload)
        body["public_key"] = self.public_key.hex()
        body["signature"] = self.sign(payload)
        return body

    def __repr__(self) -> str:
        return f"Identity({self.address})"


def verify_signature(payload: dict[str, Any], public_key: bytes, signature: bytes) -> bool:
    try:
        vk = VerifyingKey.from_string(public_key, curve=SECP256k1)
        return vk.verify_digest(signature, payload_digest(payload), sigdecode=sigdecode_der)
    except (BadSignatureError, BadDigestError, MalformedPointError, UnexpectedDER, ValueError):
        return False


class Authorizer:
    """
    Identity / permission capability consumed by the stake ledger.

    The privileged identity is fixed at construction and is the only
    caller allowed to withdraw from the reward reserve.
    """

    def __init__(self, privileged: str):
        if not privileged:
            raise ValueError("A privileged identity is required")
        self.privileged = privileged
        self._nonces: dict[str, int] = {}
        self._lock = threading.Lock()

    def resolve(self, caller: str) -> str:
        if not isinstance(caller, str) or not caller:
            raise PermissionDenied("Caller identity is required")
        return caller

    def is_privileged(self, caller: str) -> bool:
        return caller == self.privileged

    def require_privileged(self, caller: str) -> None:
        if not self.is_privileged(caller):
            raise PermissionDenied(f"{caller} is not the privileged identity")

    def verify_signed_call(
        self, payload: dict[str, Any], public_key_hex: str, signature_hex: str,
    ) -> str:
        """Authenticate a signed payload and return the caller address."""
        try:
            public_key = bytes.fromhex(public_key_hex)
            signature = bytes.fromhex(signature_hex)
        except (TypeError, ValueError):
            raise PermissionDenied("Malformed public key or signature")

        caller = self.resolve(payload.get("caller", ""))
        if derive_address(public_key) != caller:
            raise PermissionDenied("Public key does not match caller")
        if not verify_signature(payload, public_key, signature):
            raise PermissionDenied("Invalid signature")

        nonce = payload.get("nonce")
        if not isinstance(nonce, int) or isinstance(nonce, bool) or nonce < 0:
            raise PermissionDenied("A non-negative integer nonce is required")
        with self._lock:
            if nonce <= self._nonces.get(caller, -1):
                raise PermissionDenied("Stale nonce (replayed request?)")
            self._nonces[caller] = nonce
        return caller

    def last_nonce(self, caller: str) -> int:
        return self._nonces.get(caller, -1)
