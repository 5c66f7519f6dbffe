"""
Cryptographic primitives for the solver.

This module provides:
- Keccak-256 hashing (Ethereum-style)
- Key derivation and address computation on secp256k1
- Recoverable ECDSA signatures (r || s || v)
- EIP-191 personal message hashing
- Canonical JSON encoding for signed protocol messages

Design Notes:
-------------
The auction service verifies solver messages the way an Ethereum wallet
signs them: the canonical JSON of the message is hashed with Keccak-256 and
the 32-byte digest is signed as a personal message. Signatures are encoded
as 65 bytes ``r || s || v`` with ``v`` in {27, 28}.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

from Crypto.Hash import keccak
from py_ecc.secp256k1 import secp256k1


# =============================================================================
# Constants
# =============================================================================

# secp256k1 curve order (number of points on the curve)
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# EIP-191 prefix for a 32-byte personal message
PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"


# =============================================================================
# Hashing
# =============================================================================


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum-style).

    Used for: message digests, address derivation, ABI selectors.
    """
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def personal_message_hash(digest: bytes) -> bytes:
    """
    Hash a 32-byte digest as an EIP-191 personal message.

    keccak256("\\x19Ethereum Signed Message:\\n32" || digest)
    """
    if len(digest) != 32:
        raise ValueError("Digest must be 32 bytes")
    return keccak256(PERSONAL_MESSAGE_PREFIX + digest)


def canonical_json(value: Any) -> str:
    """
    Serialize a JSON value canonically.

    Keys sorted, no whitespace. This is the byte string that is hashed for
    outbound protocol messages.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# =============================================================================
# Keys
# =============================================================================


@dataclass
class KeyPair:
    """
    An ECDSA keypair on secp256k1.

    Attributes:
        private_key: 32-byte secret key
        public_key: 64-byte uncompressed public key (x || y coordinates)
    """
    private_key: bytes
    public_key: bytes

    @property
    def address(self) -> str:
        """Ethereum-style 0x address of this keypair."""
        return address_from_public_key(self.public_key)

    @property
    def private_key_hex(self) -> str:
        return self.private_key.hex()


def keypair_from_hex(private_key_hex: str) -> KeyPair:
    """
    Load a keypair from a hex-encoded private key.

    Raises:
        ValueError: if the key is not 32 bytes or outside the curve order
    """
    private_key = hex_to_bytes(private_key_hex.strip())
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")
    if not 0 < int.from_bytes(private_key, "big") < SECP256K1_ORDER:
        raise ValueError("Private key out of range")
    return KeyPair(private_key=private_key, public_key=private_key_to_public_key(private_key))


def private_key_to_public_key(private_key: bytes) -> bytes:
    """
    Derive public key from private key.

    Args:
        private_key: 32-byte private key

    Returns:
        64-byte uncompressed public key
    """
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")

    x, y = secp256k1.privtopub(private_key)
    return x.to_bytes(32, byteorder="big") + y.to_bytes(32, byteorder="big")


def address_from_public_key(public_key: bytes) -> str:
    """Last 20 bytes of keccak256(public_key), hex with 0x prefix."""
    if len(public_key) != 64:
        raise ValueError("Public key must be 64 bytes")
    return bytes_to_hex(keccak256(public_key)[-20:])


# =============================================================================
# Digital Signatures (recoverable ECDSA)
# =============================================================================


def sign(message_hash: bytes, private_key: bytes) -> bytes:
    """
    Sign a message hash using ECDSA on secp256k1.

    Args:
        message_hash: 32-byte hash of the message to sign
        private_key: 32-byte private key

    Returns:
        65-byte signature (r || s || v), v in {27, 28}
    """
    if len(message_hash) != 32:
        raise ValueError("Message hash must be 32 bytes")
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")

    v, r, s = secp256k1.ecdsa_raw_sign(message_hash, private_key)

    # Low-s form (EIP-2); flipping s flips the recovery parity
    if s > SECP256K1_ORDER // 2:
        s = SECP256K1_ORDER - s
        v = 55 - v

    return r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big") + bytes([v])


def recover_public_key(message_hash: bytes, signature: bytes) -> Optional[bytes]:
    """
    Recover the 64-byte public key from a 65-byte signature.

    Returns:
        Public key, or None if recovery fails
    """
    if len(message_hash) != 32 or len(signature) != 65:
        return None

    r = int.from_bytes(signature[:32], byteorder="big")
    s = int.from_bytes(signature[32:64], byteorder="big")
    v = signature[64]
    if v < 27:
        v += 27

    if not (1 <= r < SECP256K1_ORDER and 1 <= s < SECP256K1_ORDER) or v not in (27, 28):
        return None

    try:
        x, y = secp256k1.ecdsa_raw_recover(message_hash, (v, r, s))
    except (ValueError, ZeroDivisionError):
        return None

    return x.to_bytes(32, byteorder="big") + y.to_bytes(32, byteorder="big")


# =============================================================================
# Utility Functions
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (with or without 0x prefix) to bytes."""
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)


def is_valid_address(address: str) -> bool:
    """Check if string is a valid EVM address format."""
    if not address.startswith("0x"):
        return False
    if len(address) != 42:
        return False
    try:
        int(address, 16)
        return True
    except ValueError:
        return False


__all__ = [
    "SECP256K1_ORDER",
    "PERSONAL_MESSAGE_PREFIX",
    "keccak256",
    "personal_message_hash",
    "canonical_json",
    "KeyPair",
    "keypair_from_hex",
    "private_key_to_public_key",
    "address_from_public_key",
    "sign",
    "recover_public_key",
    "bytes_to_hex",
    "hex_to_bytes",
    "is_valid_address",
]
