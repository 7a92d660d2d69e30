"""
Append-only ledger of grant/revoke transitions.

Rows are written inside the caller's transaction (so the ledger commits or
rolls back together with the grant row it describes) and are never updated
or deleted; ``models`` rejects both at flush time. The ledger is for
compliance and inspection only; access decisions look at the live grant row.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from config import AUDIT_LOGGER_NAME
from models import AuditEntry

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)


class AuditLog:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def append(self, db: Session, entry: AuditEntry) -> AuditEntry:
        db.add(entry)
        return entry

    def list_for(self, patient_id: Optional[str] = None, doctor_id: Optional[str] = None) -> List[AuditEntry]:
        if patient_id is None and doctor_id is None:
            raise ValueError("list_for needs a patient_id or a doctor_id")
        with self.session_factory() as db:
            q = db.query(AuditEntry)
            if patient_id is not None:
                q = q.filter(AuditEntry.patient_id == patient_id)
            if doctor_id is not None:
                q = q.filter(AuditEntry.doctor_id == doctor_id)
            return q.order_by(AuditEntry.timestamp, AuditEntry.id).all()

    @staticmethod
    def emit(entry: AuditEntry):
        """Mirror a committed entry onto the audit log file."""
        audit_logger.info(
            "grant=%s patient=%s doctor=%s action=%s by=%s active=%s->%s expires=%s->%s",
            entry.grant_id, entry.patient_id, entry.doctor_id, entry.action,
            entry.performed_by, entry.old_active, entry.new_active,
            entry.old_expires_at, entry.new_expires_at,
        )
