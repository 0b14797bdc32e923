"""Reconciliation sweep for purchases stuck between confirm and capture.

A capture that succeeded at the gateway but whose flags never reached the
record (process crash, lost response, exhausted compare-and-set) leaves the
record at ``confirm ∧ ¬capture``. The sweep re-reads the intent of every
such record older than the grace period and applies what the gateway
reports.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from purchasing.config import Settings, get_settings
from purchasing.errors import GatewayError
from purchasing.gateway.port import PaymentGateway, PaymentIntent
from purchasing.purchase.record import PurchaseRecord
from purchasing.purchase.repository import PurchaseRepository
from purchasing.store.port import DELETE_FIELD, DocumentStore
from purchasing.utils.clock import parse_timestamp, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    checked: int = 0
    repaired: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"checked": self.checked, "repaired": self.repaired, "failed": self.failed}


def _repair(intent: PaymentIntent):
    """Return the change function that aligns a record with ``intent``."""

    def change(current: PurchaseRecord) -> dict | None:
        if current.capture or current.cancel:
            return None
        if intent.status == "succeeded":
            return {
                "verify": True,
                "capture": True,
                "success": True,
                "capturedAmount": intent.amount_received or current.amount,
                "error": False,
                "errorMessage": DELETE_FIELD,
            }
        if intent.status == "canceled":
            return {"cancel": True, "nextAction": DELETE_FIELD}
        if intent.status == "requires_capture" and not current.verify:
            return {"verify": True, "nextAction": DELETE_FIELD}
        return None

    return change


class ReconciliationSweep:
    def __init__(self, store: DocumentStore, gateway: PaymentGateway, settings: Settings | None = None) -> None:
        self.store = store
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.repository = PurchaseRepository(store, self.settings)

    def stale_records(self, now: datetime | None = None) -> list[PurchaseRecord]:
        cutoff = (now or utcnow()) - timedelta(minutes=self.settings.reconcile_grace_minutes)
        stale = []
        for user in self.store.list_collection(self.settings.user_path):
            for record in self.repository.list_for_user(user.id):
                if not record.purchase_id or not record.confirm or record.capture or record.cancel:
                    continue
                updated = parse_timestamp(record.updated_time or record.created_time)
                if updated is None or updated <= cutoff:
                    stale.append(record)
        return stale

    def run(self, now: datetime | None = None) -> SweepResult:
        result = SweepResult()
        for record in self.stale_records(now):
            result.checked += 1
            try:
                intent = self.gateway.retrieve_payment_intent(record.purchase_id)
            except GatewayError as exc:
                logger.warning("reconcile_lookup_failed", order_id=record.order_id, error=exc.message)
                result.failed.append(record.order_id)
                continue

            updated = self.repository.commit(record, _repair(intent))
            if updated is not record:
                logger.info(
                    "purchase_reconciled",
                    order_id=record.order_id,
                    purchase_id=record.purchase_id,
                    status=intent.status,
                )
                result.repaired.append(record.order_id)

        logger.info("reconcile_finished", checked=result.checked, repaired=len(result.repaired))
        return result
