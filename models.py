import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Integer, LargeBinary, String, Text,
    UniqueConstraint, event,
)
from sqlalchemy.orm import relationship

from db import Base
from elgamal import EncryptedBlock
from errors import AuditLogImmutableError
from schemas import EncryptedBlockDocument, GrantBundleDocument, b64

STATUS_NONE = "none"
STATUS_ACTIVE = "active"
STATUS_REVOKED = "revoked"
STATUS_EXPIRED = "expired"

ACTION_GRANTED = "granted"
ACTION_REVOKED = "revoked"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EncryptedFileRecord(Base):
    """
    One ElGamal-encrypted patient file. ``chunked`` says how to read ``blocks``:
    False -> exactly one (c1, c2) pair, True -> ordered chunk arena.
    """
    __tablename__ = "encrypted_files"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, nullable=False, index=True)
    mime_type = Column(String, nullable=False, default="application/octet-stream")
    size = Column(Integer, nullable=False)
    chunked = Column(Boolean, nullable=False)
    chunk_size = Column(Integer, nullable=True)
    block_width = Column(Integer, nullable=False)
    blocks = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class AuthorizationGrant(Base):
    """
    Patient -> doctor delegation bundle. One row per (patient, doctor); a new
    grant overwrites the bundle in place, a revoke only flips ``is_active``.
    """
    __tablename__ = "authorization_grants"

    id = Column(Integer, primary_key=True)
    patient_id = Column(String, nullable=False, index=True)
    doctor_id = Column(String, nullable=False, index=True)

    # ElGamal(doctor public key) of the one-time AES key, decimal strings
    enc_aes_key_c1 = Column(Text, nullable=False)
    enc_aes_key_c2 = Column(Text, nullable=False)
    # AES-256-GCM of the serialized patient private key
    iv = Column(LargeBinary, nullable=False)
    auth_tag = Column(LargeBinary, nullable=False)
    encrypted_private_key = Column(LargeBinary, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    authorized_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=True)

    audit_entries = relationship(
        "AuditEntry", back_populates="grant", order_by="AuditEntry.id", passive_deletes="all"
    )

    __table_args__ = (UniqueConstraint("patient_id", "doctor_id", name="uq_grant_patient_doctor"),)

    @property
    def encrypted_aes_key(self) -> EncryptedBlock:
        return EncryptedBlock(c1=int(self.enc_aes_key_c1), c2=int(self.enc_aes_key_c2))

    def status(self, now: datetime) -> str:
        if not self.is_active:
            return STATUS_REVOKED
        if self.expires_at is not None and now >= self.expires_at:
            return STATUS_EXPIRED
        return STATUS_ACTIVE

    def bundle_document(self) -> GrantBundleDocument:
        return GrantBundleDocument(
            encrypted_aes_key=EncryptedBlockDocument.from_block(self.encrypted_aes_key),
            iv=b64(self.iv),
            auth_tag=b64(self.auth_tag),
            encrypted_private_key=b64(self.encrypted_private_key),
        )

    def to_dict(self, now: datetime):
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "is_active": self.is_active,
            "status": self.status(now),
            "authorized_at": self.authorized_at.isoformat() if self.authorized_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class AuditEntry(Base):
    """Append-only record of a grant state transition."""
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    grant_id = Column(Integer, ForeignKey("authorization_grants.id"), nullable=False, index=True)
    patient_id = Column(String, nullable=False, index=True)
    doctor_id = Column(String, nullable=False, index=True)
    action = Column(Enum(ACTION_GRANTED, ACTION_REVOKED, name="audit_action"), nullable=False)
    performed_by = Column(String, nullable=False)
    old_active = Column(Boolean, nullable=True)
    new_active = Column(Boolean, nullable=False)
    old_expires_at = Column(DateTime, nullable=True)
    new_expires_at = Column(DateTime, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    grant = relationship("AuthorizationGrant", back_populates="audit_entries")


@event.listens_for(AuditEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"audit entry {target.id} cannot be modified")


@event.listens_for(AuditEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"audit entry {target.id} cannot be deleted")
