"""
Whole-file ElGamal encryption.

A payload no larger than the single-block threshold is encrypted as one
block; anything larger is cut into ``max_block_bytes`` chunks, each encrypted
independently. The two shapes are distinct types (:class:`SingleBlock` and
:class:`ChunkedBlocks`) and the persisted record carries an explicit
``chunked`` flag, so decryption never has to guess which one it holds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Union

from elgamal import (
    BlockCodec, DomainParameters, ElGamalCipher, EncryptedBlock, PrivateKey, PublicKey,
)
from errors import BlockTooLargeError, DomainParameterError, IntegrityError, KeyFormatError
from schemas import load_private_key

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class ChunkArena:
    """Ordered ciphertext chunks packed into one contiguous buffer.

    Each chunk occupies ``2 * width`` bytes: ``c1`` then ``c2``, big-endian,
    zero-padded to ``width``. Chunk ``i`` lives at ``i * 2 * width``.
    """

    def __init__(self, width: int, buffer: bytes = b""):
        if width <= 0:
            raise ValueError("width must be positive")
        if len(buffer) % (2 * width):
            raise IntegrityError("chunk buffer length is not a whole number of blocks")
        self.width = width
        self._buffer = bytes(buffer)

    @classmethod
    def from_blocks(cls, blocks: Iterable[EncryptedBlock], width: int) -> "ChunkArena":
        buf = bytearray()
        for block in blocks:
            buf += block.c1.to_bytes(width, "big")
            buf += block.c2.to_bytes(width, "big")
        return cls(width, bytes(buf))

    def __len__(self) -> int:
        return len(self._buffer) // (2 * self.width)

    def __getitem__(self, index: int) -> EncryptedBlock:
        n = len(self)
        if index < 0:
            index += n
        if not 0 <= index < n:
            raise IndexError("chunk index out of range")
        start = index * 2 * self.width
        mid = start + self.width
        return EncryptedBlock(
            c1=int.from_bytes(self._buffer[start:mid], "big"),
            c2=int.from_bytes(self._buffer[mid:mid + self.width], "big"),
        )

    def __iter__(self) -> Iterator[EncryptedBlock]:
        for i in range(len(self)):
            yield self[i]

    def __eq__(self, other):
        if not isinstance(other, ChunkArena):
            return NotImplemented
        return self.width == other.width and self._buffer == other._buffer

    def to_bytes(self) -> bytes:
        return self._buffer


@dataclass(frozen=True)
class SingleBlock:
    block: EncryptedBlock


@dataclass(frozen=True)
class ChunkedBlocks:
    arena: ChunkArena
    chunk_size: int

    def __len__(self):
        return len(self.arena)


EncryptedPayload = Union[SingleBlock, ChunkedBlocks]


@dataclass(frozen=True)
class EncryptedFile:
    payload: EncryptedPayload
    original_size: int
    mime_type: str = DEFAULT_MIME_TYPE
    owner_id: Optional[str] = None

    @property
    def chunked(self) -> bool:
        return isinstance(self.payload, ChunkedBlocks)


class FileCryptoEngine:
    def __init__(self, params: DomainParameters, single_block_threshold: int = 200):
        self.params = params
        self.cipher = ElGamalCipher(params)
        self.codec = BlockCodec(params)
        if not 0 <= single_block_threshold <= self.codec.max_block_bytes:
            raise DomainParameterError(
                f"single-block threshold {single_block_threshold} exceeds the "
                f"{self.codec.max_block_bytes}-byte block capacity of a {params.bits}-bit modulus"
            )
        self.single_block_threshold = single_block_threshold

    @property
    def chunk_size(self) -> int:
        return self.codec.max_block_bytes

    def _encrypt_chunk(self, chunk: bytes, public_key: PublicKey) -> EncryptedBlock:
        return self.cipher.encrypt(self.codec.bytes_to_int(chunk), public_key)

    def _decrypt_chunk(self, block: EncryptedBlock, private_key: PrivateKey, length: int) -> bytes:
        m = self.cipher.decrypt(block, private_key)
        try:
            return self.codec.int_to_bytes(m, length)
        except BlockTooLargeError as e:
            # ElGamal itself is unauthenticated; a value outside the chunk's
            # range means a wrong key or a corrupted block.
            raise IntegrityError("decrypted chunk does not match its recorded length") from e

    def encrypt_file(
        self,
        data: bytes,
        public_key: PublicKey,
        *,
        mime_type: str = DEFAULT_MIME_TYPE,
        owner_id: Optional[str] = None,
    ) -> EncryptedFile:
        if public_key.params != self.params:
            raise KeyFormatError("public key belongs to a different ElGamal group")
        data = bytes(data)
        size = len(data)

        if size <= self.single_block_threshold:
            payload = SingleBlock(self._encrypt_chunk(data, public_key))
            logger.info("ElGamal encrypt file: %d bytes as a single block", size)
        else:
            step = self.chunk_size
            blocks = [
                self._encrypt_chunk(data[i:i + step], public_key)
                for i in range(0, size, step)
            ]
            arena = ChunkArena.from_blocks(blocks, self.params.element_bytes)
            payload = ChunkedBlocks(arena=arena, chunk_size=step)
            logger.info("ElGamal encrypt file: %d bytes in %d chunks", size, len(blocks))

        return EncryptedFile(
            payload=payload, original_size=size, mime_type=mime_type, owner_id=owner_id
        )

    def decrypt_file(self, encrypted: EncryptedFile, private_key) -> bytes:
        key = load_private_key(private_key, self.params)
        size = encrypted.original_size
        payload = encrypted.payload

        if isinstance(payload, SingleBlock):
            if size > self.codec.max_block_bytes:
                raise BlockTooLargeError("single-block file larger than block capacity")
            out = self._decrypt_chunk(payload.block, key, size)
        elif isinstance(payload, ChunkedBlocks):
            step = payload.chunk_size
            if step > self.codec.max_block_bytes:
                raise BlockTooLargeError("recorded chunk size exceeds block capacity")
            expected = -(-size // step)
            if len(payload.arena) != expected:
                raise IntegrityError(
                    f"expected {expected} chunks for {size} bytes, found {len(payload.arena)}"
                )
            parts = []
            for i, block in enumerate(payload.arena):
                length = min(step, size - i * step)
                parts.append(self._decrypt_chunk(block, key, length))
            out = b"".join(parts)[:size]
        else:
            raise TypeError(f"unknown payload type {type(payload).__name__}")

        logger.info("ElGamal decrypt file: %d bytes", len(out))
        return out

    async def encrypt_file_async(self, data: bytes, public_key: PublicKey, **kwargs) -> EncryptedFile:
        return await asyncio.to_thread(self.encrypt_file, data, public_key, **kwargs)

    async def decrypt_file_async(self, encrypted: EncryptedFile, private_key) -> bytes:
        return await asyncio.to_thread(self.decrypt_file, encrypted, private_key)
