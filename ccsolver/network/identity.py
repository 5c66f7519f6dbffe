"""
Identity & Signing - canonicalize, hash and sign outbound feed messages.

    hash      = keccak256(canonical_json(envelope))
    signature = sign(personal_message_hash(hash))     # prefix_messages=True
              | sign(hash)                            # prefix_messages=False

Both are hex strings without 0x and are added to ``msg`` after hashing, so
the digest covers the envelope as it was before they were inserted.
"""

import copy
from typing import Any, Dict, Optional

from ccsolver.crypto import (
    KeyPair,
    canonical_json,
    hex_to_bytes,
    keccak256,
    keypair_from_hex,
    personal_message_hash,
    recover_public_key,
    sign,
    address_from_public_key,
)


class MessageSigner:
    """
    Signs protocol envelopes with the solver identity key.

    Args:
        private_key: Hex secp256k1 key
        prefix_messages: Sign the EIP-191 personal hash of the digest
    """

    def __init__(self, private_key: str, prefix_messages: bool = True):
        self.keypair: KeyPair = keypair_from_hex(private_key)
        self.prefix_messages = prefix_messages

    @property
    def address(self) -> str:
        return self.keypair.address

    def digest(self, envelope: Dict[str, Any]) -> bytes:
        return keccak256(canonical_json(envelope).encode("utf-8"))

    def _signing_hash(self, digest: bytes) -> bytes:
        return personal_message_hash(digest) if self.prefix_messages else digest

    def sign_envelope(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return a signed copy of ``envelope``.

        Raises:
            ValueError: if the envelope has no object ``msg``
        """
        if not isinstance(envelope.get("msg"), dict):
            raise ValueError("Only envelopes with an object msg can be signed")

        digest = self.digest(envelope)
        signature = sign(self._signing_hash(digest), self.keypair.private_key)

        signed = copy.deepcopy(envelope)
        signed["msg"]["hash"] = digest.hex()
        signed["msg"]["signature"] = signature.hex()
        return signed


def recover_signer(envelope: Dict[str, Any], prefix_messages: bool = True) -> Optional[str]:
    """
    Address that signed ``envelope``, or None if the hash or signature is invalid.
    """
    msg = envelope.get("msg")
    if not isinstance(msg, dict) or "hash" not in msg or "signature" not in msg:
        return None

    unsigned = copy.deepcopy(envelope)
    claimed_hash = unsigned["msg"].pop("hash")
    signature_hex = unsigned["msg"].pop("signature")

    digest = keccak256(canonical_json(unsigned).encode("utf-8"))
    if digest.hex() != claimed_hash:
        return None

    try:
        signature = hex_to_bytes(signature_hex)
    except ValueError:
        return None

    signing_hash = personal_message_hash(digest) if prefix_messages else digest
    public_key = recover_public_key(signing_hash, signature)
    if public_key is None:
        return None
    return address_from_public_key(public_key)
