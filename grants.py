"""
Patient -> doctor delegation of file-decryption capability.

Grant
    The patient's serialized private key is AES-256-GCM wrapped under a fresh
    one-time key, and that 32-byte key is ElGamal-encrypted to the doctor's
    public key. The bundle is upserted on the (patient, doctor) row and a
    ``granted`` audit entry is written in the same transaction.

Recover
    Only while the row is active and not past ``expires_at`` (checked at call
    time, there is no background sweep). The doctor's private key opens the
    AES key, which opens the patient's private key.

Revoke
    Flips ``is_active`` off and writes a ``revoked`` audit entry in the same
    transaction. The bundle itself stays in place for history.

This is key delegation, not proxy re-encryption: the doctor's process ends up
holding the patient's private key in memory.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy.dialects import postgresql, sqlite

from audit import AuditLog
from elgamal import BlockCodec, DomainParameters, ElGamalCipher, PrivateKey, PublicKey
from errors import (
    AccessDeniedError, BlockTooLargeError, ConfigurationError, IntegrityError, NotFoundError,
)
from key_wrap import KEY_SIZE, KeyWrapper
from models import (
    ACTION_GRANTED, ACTION_REVOKED, STATUS_ACTIVE, STATUS_EXPIRED, STATUS_NONE,
    AuditEntry, AuthorizationGrant, utcnow,
)
from schemas import GrantBundleDocument, load_private_key, load_public_key, serialize_private_key, unb64

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


class AccessGrantProtocol:
    def __init__(
        self,
        session_factory,
        params: DomainParameters,
        key_wrapper: Optional[KeyWrapper] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.params = params
        self.cipher = ElGamalCipher(params)
        self.codec = BlockCodec(params)
        self.key_wrapper = key_wrapper or KeyWrapper()
        self.audit_log = audit_log or AuditLog(session_factory)
        self.clock = clock

    @staticmethod
    def _find(db, patient_id: str, doctor_id: str) -> Optional[AuthorizationGrant]:
        return db.query(AuthorizationGrant).filter_by(patient_id=patient_id, doctor_id=doctor_id).first()

    @staticmethod
    def _upsert(db, values: dict) -> int:
        """INSERT .. ON CONFLICT (patient_id, doctor_id) DO UPDATE; returns the row id."""
        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise ConfigurationError(f"grant upsert is not supported on the {dialect} dialect")
        stmt = insert(AuthorizationGrant).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["patient_id", "doctor_id"],
            set_={k: stmt.excluded[k] for k in values if k not in ("patient_id", "doctor_id")},
        ).returning(AuthorizationGrant.id)
        return db.execute(stmt).scalar_one()

    # -------- grant --------
    def grant(
        self,
        patient_id: str,
        doctor_id: str,
        patient_private_key: Union[PrivateKey, bytes, str],
        doctor_public_key: Union[PublicKey, bytes, str],
        expires_in_days: Optional[float] = None,
        performed_by: str = "patient",
    ) -> AuthorizationGrant:
        if expires_in_days is not None and expires_in_days <= 0:
            raise ValueError("expires_in_days must be positive")
        patient_key = load_private_key(patient_private_key, self.params)
        doctor_key = load_public_key(doctor_public_key, self.params)

        wrapped = self.key_wrapper.wrap(serialize_private_key(patient_key))
        # raises BlockTooLargeError if the modulus is too small to carry a 256-bit key
        encrypted_aes_key = self.cipher.encrypt(self.codec.bytes_to_int(wrapped.key), doctor_key)

        now = self.clock()
        expires_at = now + timedelta(days=expires_in_days) if expires_in_days else None

        with self.session_factory() as db, db.begin():
            # previous state, recorded in the audit entry
            previous = self._find(db, patient_id, doctor_id)
            old_active = previous.is_active if previous is not None else None
            old_expires_at = previous.expires_at if previous is not None else None

            grant_id = self._upsert(db, {
                "patient_id": patient_id,
                "doctor_id": doctor_id,
                "enc_aes_key_c1": str(encrypted_aes_key.c1),
                "enc_aes_key_c2": str(encrypted_aes_key.c2),
                "iv": wrapped.iv,
                "auth_tag": wrapped.auth_tag,
                "encrypted_private_key": wrapped.ciphertext,
                "is_active": True,
                "authorized_at": now,
                "expires_at": expires_at,
            })
            row = db.get(AuthorizationGrant, grant_id, populate_existing=True)

            entry = self.audit_log.append(db, AuditEntry(
                grant_id=grant_id,
                patient_id=patient_id,
                doctor_id=doctor_id,
                action=ACTION_GRANTED,
                performed_by=performed_by,
                old_active=old_active,
                new_active=True,
                old_expires_at=old_expires_at,
                new_expires_at=expires_at,
                timestamp=now,
            ))

        logger.info("granted doctor %s access to patient %s files (expires %s)", doctor_id, patient_id, expires_at)
        self.audit_log.emit(entry)
        return row

    # -------- recover --------
    def check_usable(self, row: Optional[AuthorizationGrant], patient_id: str, doctor_id: str, now: datetime):
        """Raise AccessDeniedError unless ``row`` is active and unexpired at ``now``."""
        if row is None:
            reason = AccessDeniedError.NOT_FOUND
        else:
            status = row.status(now)
            if status == STATUS_ACTIVE:
                return
            reason = AccessDeniedError.REVOKED if status != STATUS_EXPIRED else AccessDeniedError.EXPIRED
        logger.warning("access denied for doctor %s on patient %s: %s", doctor_id, patient_id, reason)
        raise AccessDeniedError(reason, patient_id=patient_id, doctor_id=doctor_id)

    def open_bundle(
        self,
        bundle: Union[AuthorizationGrant, GrantBundleDocument],
        doctor_private_key: Union[PrivateKey, bytes, str],
    ) -> PrivateKey:
        """Decrypt a bundle with the doctor's key. No grant-state checks here."""
        doctor_key = load_private_key(doctor_private_key, self.params)
        if isinstance(bundle, GrantBundleDocument):
            block = bundle.encrypted_aes_key.to_block()
            iv, tag, ct = unb64(bundle.iv), unb64(bundle.auth_tag), unb64(bundle.encrypted_private_key)
        else:
            block = bundle.encrypted_aes_key
            iv, tag, ct = bundle.iv, bundle.auth_tag, bundle.encrypted_private_key

        m = self.cipher.decrypt(block, doctor_key)
        try:
            aes_key = self.codec.int_to_bytes(m, KEY_SIZE)
        except BlockTooLargeError as e:
            raise IntegrityError("wrapped AES key did not decrypt to 256 bits") from e
        secret = self.key_wrapper.unwrap(iv, ct, tag, aes_key)
        return load_private_key(secret, self.params)

    def recover(
        self,
        patient_id: str,
        doctor_id: str,
        doctor_private_key: Union[PrivateKey, bytes, str],
    ) -> PrivateKey:
        now = self.clock()
        with self.session_factory() as db:
            row = self._find(db, patient_id, doctor_id)
        self.check_usable(row, patient_id, doctor_id, now)
        key = self.open_bundle(row, doctor_private_key)
        logger.info("doctor %s recovered patient %s key", doctor_id, patient_id)
        return key

    # -------- revoke --------
    def revoke(self, patient_id: str, doctor_id: str, performed_by: str = "patient") -> AuthorizationGrant:
        """Deactivate a grant.

        A missing grant raises NotFoundError. An already inactive grant is left
        alone and no audit entry is written, since nothing changed.
        """
        now = self.clock()
        with self.session_factory() as db, db.begin():
            row = self._find(db, patient_id, doctor_id)
            if row is None:
                raise NotFoundError(f"no grant for patient {patient_id} / doctor {doctor_id}")
            if not row.is_active:
                logger.info("grant for patient %s / doctor %s already inactive", patient_id, doctor_id)
                return row
            row.is_active = False
            entry = self.audit_log.append(db, AuditEntry(
                grant_id=row.id,
                patient_id=patient_id,
                doctor_id=doctor_id,
                action=ACTION_REVOKED,
                performed_by=performed_by,
                old_active=True,
                new_active=False,
                old_expires_at=row.expires_at,
                new_expires_at=row.expires_at,
                timestamp=now,
            ))

        logger.info("revoked doctor %s access to patient %s files", doctor_id, patient_id)
        self.audit_log.emit(entry)
        return row

    # -------- inspection --------
    def status(self, patient_id: str, doctor_id: str) -> str:
        with self.session_factory() as db:
            row = self._find(db, patient_id, doctor_id)
        return STATUS_NONE if row is None else row.status(self.clock())

    def get(self, patient_id: str, doctor_id: str) -> AuthorizationGrant:
        with self.session_factory() as db:
            row = self._find(db, patient_id, doctor_id)
        if row is None:
            raise NotFoundError(f"no grant for patient {patient_id} / doctor {doctor_id}")
        return row

    def list_grants(self, patient_id: Optional[str] = None, doctor_id: Optional[str] = None):
        """Grants for a patient (their doctors) or a doctor (their patients), newest first."""
        if patient_id is None and doctor_id is None:
            raise ValueError("list_grants needs a patient_id or a doctor_id")
        now = self.clock()
        with self.session_factory() as db:
            q = db.query(AuthorizationGrant)
            if patient_id is not None:
                q = q.filter(AuthorizationGrant.patient_id == patient_id)
            if doctor_id is not None:
                q = q.filter(AuthorizationGrant.doctor_id == doctor_id)
            rows = q.order_by(AuthorizationGrant.authorized_at.desc(), AuthorizationGrant.id.desc()).all()
        return [r.to_dict(now) for r in rows]
