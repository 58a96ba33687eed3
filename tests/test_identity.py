"""Tests for identities, signed calls and the authorizer."""

import pytest

from yieldlock_core.errors import PermissionDenied
from yieldlock_core.identity import (
    ADDRESS_PREFIX,
    Authorizer,
    Identity,
    canonical_json,
    derive_address,
    verify_signature,
)


@pytest.fixture
def alice():
    return Identity.from_seed("alice-fixture-seed")


@pytest.fixture
def authorizer(alice):
    return Authorizer(alice.address)


class TestIdentity:
    def test_from_seed_is_deterministic(self):
        a = Identity.from_seed("same")
        b = Identity.from_seed("same")
        assert a.address == b.address
        assert a.public_key == b.public_key

    def test_different_seeds_differ(self):
        assert Identity.from_seed("a").address != Identity.from_seed("b").address

    def test_address_format(self, alice):
        assert alice.address.startswith(ADDRESS_PREFIX)
        assert len(alice.address) == 1 + 40
        assert len(alice.public_key) == 65
        assert alice.public_key[0] == 0x04

    def test_derive_address_accepts_raw_key(self, alice):
        assert derive_address(alice.public_key[1:]) == alice.address

    def test_create_is_random(self):
        assert Identity.create().address != Identity.create().address

    def test_key_file_round_trip(self, tmp_path):
        path = tmp_path / "keys" / "node.key"
        first = Identity.from_key_file(str(path))
        assert path.exists()
        second = Identity.from_key_file(str(path))
        assert first.address == second.address


class TestSignatures:
    def test_canonical_json_is_order_independent(self):
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})

    def test_sign_and_verify(self, alice):
        payload = {"caller": alice.address, "nonce": 1, "amount": 10}
        sig = bytes.fromhex(alice.sign(payload))
        assert verify_signature(payload, alice.public_key, sig)

    def test_tampered_payload_fails(self, alice):
        payload = {"caller": alice.address, "nonce": 1, "amount": 10}
        sig = bytes.fromhex(alice.sign(payload))
        assert not verify_signature({**payload, "amount": 11}, alice.public_key, sig)

    def test_garbage_signature_fails(self, alice):
        assert not verify_signature({"x": 1}, alice.public_key, b"\x00\x01")

    def test_garbage_key_fails(self, alice):
        sig = bytes.fromhex(alice.sign({"x": 1}))
        assert not verify_signature({"x": 1}, b"\x04" + b"\x00" * 10, sig)

    def test_signed_call_adds_key_and_signature(self, alice):
        body = alice.signed_call({"caller": alice.address, "nonce": 0})
        assert body["public_key"] == alice.public_key.hex()
        assert "signature" in body


class TestAuthorizer:
    def test_requires_privileged_identity(self):
        with pytest.raises(ValueError):
            Authorizer("")

    def test_require_privileged(self, authorizer, alice):
        authorizer.require_privileged(alice.address)
        with pytest.raises(PermissionDenied):
            authorizer.require_privileged("yMallory")

    @pytest.mark.parametrize("caller", ["", None, 42])
    def test_resolve_rejects_missing_caller(self, authorizer, caller):
        with pytest.raises(PermissionDenied):
            authorizer.resolve(caller)

    def test_verify_signed_call(self, authorizer, alice):
        payload = {"action": "stake.open", "caller": alice.address, "nonce": 1}
        caller = authorizer.verify_signed_call(
            payload, alice.public_key.hex(), alice.sign(payload),
        )
        assert caller == alice.address
        assert authorizer.last_nonce(alice.address) == 1

    def test_replayed_nonce_rejected(self, authorizer, alice):
        payload = {"action": "reserve.add", "caller": alice.address, "nonce": 5}
        sig = alice.sign(payload)
        authorizer.verify_signed_call(payload, alice.public_key.hex(), sig)
        with pytest.raises(PermissionDenied, match="nonce"):
            authorizer.verify_signed_call(payload, alice.public_key.hex(), sig)

    def test_missing_nonce_rejected(self, authorizer, alice):
        payload = {"action": "reserve.add", "caller": alice.address}
        with pytest.raises(PermissionDenied):
            authorizer.verify_signed_call(payload, alice.public_key.hex(), alice.sign(payload))

    def test_caller_must_match_key(self, authorizer, alice):
        mallory = Identity.from_seed("mallory")
        payload = {"action": "reserve.remove", "caller": alice.address, "nonce": 1}
        with pytest.raises(PermissionDenied, match="does not match"):
            authorizer.verify_signed_call(
                payload, mallory.public_key.hex(), mallory.sign(payload),
            )

    def test_bad_signature_rejected(self, authorizer, alice):
        payload = {"action": "stake.close", "caller": alice.address, "nonce": 1}
        other = {"action": "stake.close", "caller": alice.address, "nonce": 2}
        with pytest.raises(PermissionDenied, match="Invalid signature"):
            authorizer.verify_signed_call(payload, alice.public_key.hex(), alice.sign(other))
        assert authorizer.last_nonce(alice.address) == -1

    def test_malformed_hex_rejected(self, authorizer, alice):
        payload = {"caller": alice.address, "nonce": 1}
        with pytest.raises(PermissionDenied):
            authorizer.verify_signed_call(payload, "zz", "zz")
