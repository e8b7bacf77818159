"""Structured audit logging for booking and payment actions.

Provides detailed audit trails for compliance and dispute handling.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from carbooking.logging import get_logger

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Types of auditable events."""

    # Booking lifecycle
    RESERVATION_REQUESTED = "reservation_requested"
    RESERVATION_TRANSITIONED = "reservation_transitioned"

    # Payments
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"

    # Security
    PERMISSION_DENIED = "permission_denied"
    WEBHOOK_REJECTED = "webhook_rejected"


class AuditLogger:
    """Centralized audit logging service."""

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        actor_id: str,
        resource_type: str,
        resource_id: UUID | str,
        action: str,
        success: bool = True,
        metadata: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Log an auditable event with structured context.

        Args:
            event_type: Type of audit event
            actor_id: Identity of the acting user, or "system"
            resource_type: Type of resource (reservation, payment_event)
            resource_id: ID of the affected resource
            action: Human-readable action description
            success: Whether the action succeeded
            metadata: Additional context (amounts, statuses, references)
            error: Error message if action failed
        """
        audit_entry = {
            "event_type": event_type.value,
            "actor_id": actor_id,
            "resource_type": resource_type,
            "resource_id": str(resource_id),
            "action": action,
            "success": success,
            "timestamp": datetime.utcnow().isoformat(),
            "metadata": metadata or {},
        }

        if error:
            audit_entry["error"] = error

        logger.info("audit_event", **audit_entry)

    @staticmethod
    def log_reservation_requested(
        actor_id: str,
        reservation_id: UUID,
        vehicle_id: UUID,
        total_payable: int,
        currency: str,
    ) -> None:
        """Log a new reservation request."""
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_REQUESTED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action="Requested reservation",
            metadata={
                "vehicle_id": str(vehicle_id),
                "total_payable": total_payable,
                "currency": currency,
            },
        )

    @staticmethod
    def log_transition(
        actor_id: str,
        reservation_id: UUID,
        from_status: str,
        to_status: str,
        reason: Optional[str] = None,
    ) -> None:
        """Log a reservation status change."""
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_TRANSITIONED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action=f"Moved reservation from {from_status} to {to_status}",
            metadata={"from_status": from_status, "to_status": to_status, "reason": reason},
        )

    @staticmethod
    def log_payment_confirmed(
        reservation_id: UUID,
        payment_reference: str,
        amount: int,
    ) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_CONFIRMED,
            actor_id="system",
            resource_type="reservation",
            resource_id=reservation_id,
            action="Payment confirmed",
            metadata={"payment_reference": payment_reference, "amount": amount},
        )

    @staticmethod
    def log_cash_received(actor_id: str, reservation_id: UUID, amount: int) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_CONFIRMED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action="Cash payment received",
            metadata={"payment_method": "cash", "amount": amount},
        )

    @staticmethod
    def log_payment_failed(reservation_id: UUID, payment_reference: Optional[str]) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_FAILED,
            actor_id="system",
            resource_type="reservation",
            resource_id=reservation_id,
            action="Payment failed",
            success=False,
            metadata={"payment_reference": payment_reference},
        )

    @staticmethod
    def log_payment_refunded(
        actor_id: str,
        reservation_id: UUID,
        refund_reference: str,
        amount: int,
    ) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_REFUNDED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action="Payment refunded",
            metadata={"refund_reference": refund_reference, "amount": amount},
        )

    @staticmethod
    def log_permission_denied(
        actor_id: str,
        resource_type: str,
        resource_id: UUID | str,
        attempted_action: str,
    ) -> None:
        """Log unauthorized access attempts."""
        AuditLogger.log_event(
            event_type=AuditEventType.PERMISSION_DENIED,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            action=f"Permission denied: {attempted_action}",
            success=False,
            metadata={"attempted_action": attempted_action},
        )

    @staticmethod
    def log_webhook_rejected(reason: str) -> None:
        """Log a payment event that failed verification."""
        AuditLogger.log_event(
            event_type=AuditEventType.WEBHOOK_REJECTED,
            actor_id="payment_processor",
            resource_type="payment_event",
            resource_id="unverified",
            action="Rejected payment event",
            success=False,
            error=reason,
        )
