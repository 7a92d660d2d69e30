"""
Persist and reload :class:`file_crypto.EncryptedFile` values.

The ``chunked`` column is the variant tag. ``blocks`` always holds packed
``(c1, c2)`` pairs of ``block_width`` bytes each: exactly one pair for a
single-block file, the chunk arena for a chunked one.
"""

from typing import List

from sqlalchemy.orm import Session

from errors import IntegrityError, NotFoundError
from file_crypto import ChunkArena, ChunkedBlocks, EncryptedFile, SingleBlock
from models import EncryptedFileRecord


def store_encrypted_file(db: Session, encrypted: EncryptedFile, block_width: int) -> EncryptedFileRecord:
    if encrypted.owner_id is None:
        raise ValueError("encrypted file has no owner_id")
    payload = encrypted.payload
    if isinstance(payload, ChunkedBlocks):
        if payload.arena.width != block_width:
            raise ValueError("chunk arena width does not match block_width")
        blocks, chunk_size = payload.arena.to_bytes(), payload.chunk_size
    else:
        blocks, chunk_size = ChunkArena.from_blocks([payload.block], block_width).to_bytes(), None

    rec = EncryptedFileRecord(
        owner_id=encrypted.owner_id,
        mime_type=encrypted.mime_type,
        size=encrypted.original_size,
        chunked=encrypted.chunked,
        chunk_size=chunk_size,
        block_width=block_width,
        blocks=blocks,
    )
    db.add(rec)
    db.flush()
    return rec


def record_to_encrypted_file(rec: EncryptedFileRecord) -> EncryptedFile:
    arena = ChunkArena(rec.block_width, rec.blocks)
    if rec.chunked:
        if rec.chunk_size is None:
            raise IntegrityError(f"chunked file {rec.id} has no chunk size")
        payload = ChunkedBlocks(arena=arena, chunk_size=rec.chunk_size)
    else:
        if len(arena) != 1:
            raise IntegrityError(f"single-block file {rec.id} holds {len(arena)} blocks")
        payload = SingleBlock(arena[0])
    return EncryptedFile(
        payload=payload, original_size=rec.size, mime_type=rec.mime_type, owner_id=rec.owner_id
    )


def load_encrypted_file(db: Session, file_id: str) -> EncryptedFile:
    rec = db.get(EncryptedFileRecord, file_id)
    if not rec:
        raise NotFoundError(f"encrypted file {file_id} not found")
    return record_to_encrypted_file(rec)


def list_files_for_owner(db: Session, owner_id: str) -> List[EncryptedFileRecord]:
    return (
        db.query(EncryptedFileRecord)
        .filter_by(owner_id=owner_id)
        .order_by(EncryptedFileRecord.created_at.desc())
        .all()
    )
