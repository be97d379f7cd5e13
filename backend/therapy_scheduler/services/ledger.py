from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine

from ..errors import NotFoundError, ValidationError
from ..models import LedgerEntryType, LedgerTransaction, Therapist
from .ids import new_entry_id
from .repository import find_therapist, open_session, storage_errors

logger = logging.getLogger(__name__)


class SqlLedger:
    """Therapist balance plus an append-only list of charge/credit transactions."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _apply(self, therapist_id: str, entry_type: LedgerEntryType, amount: float,
               description: str, booking_id: Optional[str] = None) -> float:
        if amount <= 0:
            raise ValidationError("Amount must be a positive number", [f"amount: {amount!r}"])
        delta = -amount if entry_type == LedgerEntryType.charge else amount

        with storage_errors(f"ledger_{entry_type.value}", therapist_id), open_session(self.engine) as session:
            therapist = find_therapist(session, therapist_id)
            if not therapist:
                raise NotFoundError("Therapist not found")
            session.exec(
                update(Therapist)
                .where(Therapist.id == therapist.id)
                .values(balance=Therapist.balance + delta)
            )
            session.add(LedgerTransaction(
                id=new_entry_id("txn"),
                therapist_id=therapist.id,
                entry_type=entry_type,
                amount=amount,
                description=description,
                booking_id=booking_id,
            ))
            session.commit()
            session.refresh(therapist)
            return therapist.balance

    def debit(self, therapist_id: str, amount: float, reason: str, booking_id: Optional[str] = None) -> None:
        balance = self._apply(therapist_id, LedgerEntryType.charge, amount, reason, booking_id)
        logger.info("Charged therapist=%s %.2f (balance %.2f)", therapist_id, amount, balance)

    def top_up(self, therapist_id: str, amount: float) -> float:
        return self._apply(therapist_id, LedgerEntryType.credit, amount, "Balance top up")
