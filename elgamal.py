"""
ElGamal over a fixed prime-order group.

Provides the group parameters, key pairs, the byte <-> integer block codec and
the single-block probabilistic cipher used to encrypt patient files directly.
All randomness comes from :mod:`secrets`; number theory helpers come from
``Crypto.Util.number`` (pycryptodome).
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass

from Crypto.Util.number import inverse, isPrime

from errors import BlockTooLargeError, DomainParameterError, IntegrityError

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Group and keys
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class DomainParameters:
    """The ElGamal group: prime modulus ``p`` and generator ``g``."""
    p: int
    g: int

    @property
    def bits(self) -> int:
        return self.p.bit_length()

    @property
    def max_block_bytes(self) -> int:
        # Largest byte count whose integer value is always < p.
        return (self.bits - 1) // 8

    @property
    def element_bytes(self) -> int:
        return (self.bits + 7) // 8

    def validate(self, min_bits: int = 0) -> "DomainParameters":
        if self.p < 5 or not isPrime(self.p):
            raise DomainParameterError("modulus p is not prime")
        if self.bits < min_bits:
            raise DomainParameterError(
                f"modulus is {self.bits} bits, at least {min_bits} required"
            )
        if not 1 < self.g < self.p - 1:
            raise DomainParameterError("generator g must lie in [2, p-2]")
        return self

    def random_exponent(self) -> int:
        """Uniform integer in [1, p-2]."""
        return secrets.randbelow(self.p - 2) + 1


@dataclass(frozen=True)
class PublicKey:
    params: DomainParameters
    y: int


@dataclass(frozen=True)
class PrivateKey:
    params: DomainParameters
    x: int

    def __repr__(self):
        return f"PrivateKey(bits={self.params.bits}, x=<redacted>)"


@dataclass(frozen=True)
class KeyPair:
    public: PublicKey
    private: PrivateKey


@dataclass(frozen=True)
class EncryptedBlock:
    """One ElGamal ciphertext ``(c1, c2)``."""
    c1: int
    c2: int


# --------------------------------------------------------------------------- #
# Key generation
# --------------------------------------------------------------------------- #

class KeyPairGenerator:
    """Produces key pairs over one validated set of domain parameters."""

    def __init__(self, params: DomainParameters, min_bits: int = 0):
        self.params = params
        self.min_bits = min_bits
        self._validated = False

    def generate(self) -> KeyPair:
        if not self._validated:
            self.params.validate(self.min_bits)
            self._validated = True
        x = self.params.random_exponent()
        y = pow(self.params.g, x, self.params.p)
        logger.info("generated ElGamal key pair (%d-bit group)", self.params.bits)
        return KeyPair(PublicKey(self.params, y), PrivateKey(self.params, x))

    async def generate_async(self) -> KeyPair:
        return await asyncio.to_thread(self.generate)


# --------------------------------------------------------------------------- #
# Block codec
# --------------------------------------------------------------------------- #

class BlockCodec:
    """Maps byte strings of at most ``max_block_bytes`` to integers below ``p``.

    Big-endian integers lose leading zero bytes, so decoding always takes the
    original length and left-pads back to it. Encoded values are offset by one
    so an all-zero or empty block never becomes m = 0, which would encrypt to
    c2 = 0 for every k. The largest encoded value, 2**(8 * max_block_bytes),
    is still below p.
    """

    def __init__(self, params: DomainParameters):
        self.params = params
        self.max_block_bytes = params.max_block_bytes

    def bytes_to_int(self, data: bytes) -> int:
        if len(data) > self.max_block_bytes:
            raise BlockTooLargeError(
                f"{len(data)} bytes exceed the {self.max_block_bytes}-byte block capacity"
            )
        return int.from_bytes(data, "big") + 1

    def int_to_bytes(self, value: int, length: int) -> bytes:
        if length > self.max_block_bytes:
            raise BlockTooLargeError(
                f"{length} bytes exceed the {self.max_block_bytes}-byte block capacity"
            )
        n = value - 1
        if n < 0 or n.bit_length() > length * 8:
            raise BlockTooLargeError(f"value does not decode to {length} bytes")
        return n.to_bytes(length, "big")


# --------------------------------------------------------------------------- #
# Cipher
# --------------------------------------------------------------------------- #

class ElGamalCipher:
    def __init__(self, params: DomainParameters):
        self.params = params

    def encrypt(self, m: int, public_key: PublicKey) -> EncryptedBlock:
        p, g = self.params.p, self.params.g
        if not 0 <= m < p:
            raise BlockTooLargeError("message integer must satisfy 0 <= m < p")
        # fresh k on every call
        k = self.params.random_exponent()
        c1 = pow(g, k, p)
        c2 = (m * pow(public_key.y, k, p)) % p
        return EncryptedBlock(c1=c1, c2=c2)

    def decrypt(self, block: EncryptedBlock, private_key: PrivateKey) -> int:
        p = self.params.p
        if not (0 < block.c1 < p and 0 <= block.c2 < p):
            raise IntegrityError("ciphertext component out of range for this group")
        s = pow(block.c1, private_key.x, p)
        return (block.c2 * inverse(s, p)) % p
