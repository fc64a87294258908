"""Messages signed under EIP-712 and verification of their signers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from .crypto import PrivateKeySigner, Signature, parse_address
from .eip712 import Eip712Domain, Eip712Struct, hash_struct, signing_hash
from .errors import VerificationFailed

M = TypeVar("M", bound=Eip712Struct)


@dataclass(frozen=True)
class EIP712SignedMessage(Generic[M]):
    """A message with an ECDSA signature of its EIP-712 signing hash."""

    message: M
    signature: Signature

    @classmethod
    def sign(
        cls,
        domain_separator: Eip712Domain,
        message: M,
        signing_wallet: PrivateKeySigner,
    ) -> EIP712SignedMessage[M]:
        """Sign ``message`` under ``domain_separator`` with ``signing_wallet``."""
        digest = signing_hash(message, domain_separator)
        return cls(message, signing_wallet.sign_hash(digest))

    def recover_signer(self, domain_separator: Eip712Domain) -> bytes:
        """Return the address that produced the signature."""
        return self.signature.recover_address(signing_hash(self.message, domain_separator))

    def verify(self, domain_separator: Eip712Domain, expected_address: bytes | str) -> None:
        """Raise :class:`VerificationFailed` unless signed by ``expected_address``."""
        expected = parse_address(expected_address)
        received = self.recover_signer(domain_separator)
        if received != expected:
            raise VerificationFailed(expected, received)

    def unique_hash(self) -> bytes:
        """Return the struct hash of the message, ignoring the signature."""
        return hash_struct(self.message)

    def signature_bytes(self) -> bytes:
        """Return the 65-byte encoded signature."""
        return self.signature.to_bytes()