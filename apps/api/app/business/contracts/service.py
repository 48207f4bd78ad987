from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app import events
from app.business.contracts.expiration import (
    URGENT_DAYS,
    WARNING_DAYS,
    classify_expiration,
    days_until,
    default_renewal_end,
    notification_priority,
)
from app.business.contracts.models import Contract
from app.business.contracts.schemas import (
    BatchResultRead,
    ContractCreate,
    ContractRead,
    ExpirationAlertRead,
    RenewalStatsRead,
)
from app.core.config import get_settings
from app.metrics import observe_contract_renewal
from app.otel import operation_span
from app.services.best_effort import BestEffortDispatcher, dispatcher


logger = logging.getLogger("app.contracts")

VALID_CONTRACT_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"sent", "signed", "terminated"},
    "sent": {"signed", "terminated"},
    "signed": {"expired", "terminated"},
    "expired": {"signed"},
    "terminated": set(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ContractExpirationService:
    side_effects: BestEffortDispatcher = dispatcher

    def create_contract(self, session: Session, payload: ContractCreate) -> ContractRead:
        contract = Contract(**payload.model_dump(mode="python"))
        if contract.status == "signed":
            contract.signed_at = utcnow()
        session.add(contract)
        session.commit()
        session.refresh(contract)
        return ContractRead.model_validate(contract)

    def get_contract(self, session: Session, contract_id: uuid.UUID) -> ContractRead:
        return ContractRead.model_validate(self._get(session, contract_id))

    def sign_contract(self, session: Session, contract_id: uuid.UUID) -> ContractRead:
        contract = self._get(session, contract_id)
        self._ensure_transition(contract, "signed")
        old_status = contract.status
        contract.status = "signed"
        contract.signed_at = utcnow()
        session.commit()
        session.refresh(contract)
        self.side_effects.audit(session, "contract_signed", "contract", str(contract_id), {"status": old_status}, {"status": "signed"})
        return ContractRead.model_validate(contract)

    def get_expiring_contracts(
        self,
        session: Session,
        days_ahead: int | None = None,
        *,
        today: date | None = None,
    ) -> list[ContractRead]:
        window = days_ahead if days_ahead is not None else get_settings().contract_expiration_window_days
        start = today or utcnow().date()
        contracts = session.scalars(
            select(Contract)
            .where(
                Contract.status == "signed",
                Contract.end_date >= start,
                Contract.end_date <= start + timedelta(days=window),
            )
            .order_by(Contract.end_date.asc(), Contract.id.asc())
        ).all()
        return [ContractRead.model_validate(contract) for contract in contracts]

    def get_expiration_alerts(self, session: Session, *, today: date | None = None) -> list[ExpirationAlertRead]:
        current = today or utcnow().date()
        alerts: list[ExpirationAlertRead] = []
        for contract in self.get_expiring_contracts(session, today=current):
            remaining = days_until(contract.end_date, current)
            classified = classify_expiration(remaining, contract.auto_renew)
            alerts.append(
                ExpirationAlertRead(
                    contract=contract,
                    days_until_expiration=remaining,
                    alert_level=classified.level,
                    recommended_action=classified.recommended_action,
                )
            )
        return alerts

    def send_expiration_notifications(self, session: Session, *, today: date | None = None) -> BatchResultRead:
        sent = 0
        errors = 0
        for alert in self.get_expiration_alerts(session, today=today):
            if alert.alert_level not in ("urgent", "warning"):
                continue
            contract = alert.contract
            text = (
                f'Your contract "{contract.title}" will expire in {alert.days_until_expiration} days. '
                f"{alert.recommended_action}"
            )
            if not self.side_effects.notify(session, contract.client_id, text, notification_priority(alert.alert_level)):  # type: ignore[arg-type]
                errors += 1
                continue
            sent += 1
            self.side_effects.audit(
                session,
                "contract_expiration_notification_sent",
                "contract",
                str(contract.id),
                None,
                {"days_until_expiration": alert.days_until_expiration, "alert_level": alert.alert_level},
            )
        logger.info("contract.expiration_notifications", extra={"outcome": "sent" if not errors else "partial"})
        return BatchResultRead(processed=sent, errors=errors)

    def process_auto_renewals(self, session: Session, *, today: date | None = None) -> BatchResultRead:
        current = today or utcnow().date()
        window = get_settings().contract_auto_renew_window_days
        contract_ids = session.scalars(
            select(Contract.id)
            .where(
                Contract.status == "signed",
                Contract.auto_renew.is_(True),
                Contract.end_date >= current,
                Contract.end_date <= current + timedelta(days=window),
            )
            .order_by(Contract.end_date.asc(), Contract.id.asc())
        ).all()

        renewed = 0
        errors = 0
        with operation_span("contracts.auto_renewals", candidates=len(contract_ids)) as span:
            for contract_id in contract_ids:
                try:
                    self.renew_contract(session, contract_id)
                except HTTPException as exc:
                    errors += 1
                    observe_contract_renewal("failed")
                    logger.warning("contract.renewal_failed", extra={"contract_id": str(contract_id), "error": str(exc.detail)})
                    continue
                renewed += 1
            span.set_attribute("renewed", renewed)
        return BatchResultRead(processed=renewed, errors=errors)

    def renew_contract(self, session: Session, contract_id: uuid.UUID, new_end_date: date | None = None) -> ContractRead:
        contract = self._get(session, contract_id)
        if contract.status == "terminated":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Cannot renew a terminated contract")

        previous_end = contract.end_date
        renewed_end = new_end_date or default_renewal_end(previous_end)
        if renewed_end <= previous_end:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="new_end_date must be after the current end date")

        contract.end_date = renewed_end
        if contract.status == "expired":
            contract.status = "signed"
        contract.updated_at = utcnow()
        session.commit()
        session.refresh(contract)
        contract_read = ContractRead.model_validate(contract)

        observe_contract_renewal("renewed")
        logger.info("contract.renewed", extra={"contract_id": str(contract_id)})
        self.side_effects.audit(
            session,
            "contract_renewed",
            "contract",
            str(contract_id),
            {"end_date": previous_end.isoformat()},
            {"end_date": renewed_end.isoformat()},
        )
        self.side_effects.notify(
            session,
            contract_read.client_id,
            f'Your contract "{contract_read.title}" has been renewed until {renewed_end.isoformat()}.',
            "normal",
        )
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "contract.renewed",
                "occurred_at": utcnow().isoformat(),
                "payload": {"contract_id": str(contract_id), "end_date": renewed_end.isoformat()},
            }
        )
        return contract_read

    def terminate_contract(self, session: Session, contract_id: uuid.UUID, reason: str) -> ContractRead:
        contract = self._get(session, contract_id)
        self._ensure_transition(contract, "terminated")
        old_status = contract.status
        contract.status = "terminated"
        contract.terminated_reason = reason
        contract.updated_at = utcnow()
        session.commit()
        session.refresh(contract)

        self.side_effects.audit(
            session,
            "contract_terminated",
            "contract",
            str(contract_id),
            {"status": old_status},
            {"status": "terminated", "reason": reason},
        )
        return ContractRead.model_validate(contract)

    def get_renewal_stats(self, session: Session, *, today: date | None = None) -> RenewalStatsRead:
        current = today or utcnow().date()
        signed = select(func.count()).select_from(Contract).where(Contract.status == "signed")

        def expiring_within(days: int) -> int:
            return session.scalar(signed.where(Contract.end_date <= current + timedelta(days=days))) or 0

        return RenewalStatsRead(
            total_active=session.scalar(signed) or 0,
            expiring_in_30_days=expiring_within(URGENT_DAYS),
            expiring_in_60_days=expiring_within(WARNING_DAYS),
            expiring_in_90_days=expiring_within(90),
            auto_renew_enabled=session.scalar(signed.where(Contract.auto_renew.is_(True))) or 0,
        )

    def _ensure_transition(self, contract: Contract, target: str) -> None:
        if target not in VALID_CONTRACT_TRANSITIONS.get(contract.status, set()):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot move contract from {contract.status} to {target}",
            )

    def _get(self, session: Session, contract_id: uuid.UUID) -> Contract:
        contract = session.get(Contract, contract_id)
        if contract is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")
        return contract


contract_service = ContractExpirationService()
