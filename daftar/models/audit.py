"""
Audit Models for Daftar

Every ledger mutation and every access decision is logged for audit purposes.
This provides:
1. Complete traceability of balance changes
2. Debugging information when a cascade misbehaves
3. A history the user can review

DESIGN DECISION: The audit log is append-only. A balance can always be
explained by replaying the events that touched its account.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from daftar.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Categories and accounts
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    BALANCES_RECOMPUTED = "balances_recomputed"
    MUTATION_FAILED = "mutation_failed"

    # Access gate
    PIN_VERIFIED = "pin_verified"
    PIN_REJECTED = "pin_rejected"
    PIN_THROTTLED = "pin_throttled"
    PIN_CHANGED = "pin_changed"
    SETTINGS_UPDATED = "settings_updated"

    # Read models
    REFERENCE_SKIPPED = "reference_skipped"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Maps onto the structlog level used when the event is logged."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    One row of the audit log.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Primary key of the audit row"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="UTC time the event was recorded"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="What happened"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="How loudly to log it"
    )

    # Subject: the category, account, transaction or gate involved
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'gate')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="Numeric id of the subject, when it has one"
    )

    # Groups the events of one user action
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one user action)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="One-line summary for the history screen"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured payload (amounts as strings)"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="False for derived events such as cascades"
    )

    def to_log_dict(self) -> dict:
        """
        Flatten for structlog keyword arguments.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_log table.

        Columns in order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message,
         is_user_action)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            self.entity_id,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_code,
            self.error_message,
            int(self.is_user_action),
        )

    @classmethod
    def from_row(cls, row: tuple) -> "AuditEvent":
        """Rebuild an event from an audit_log row."""
        return cls(
            event_id=UUID(row[0]),
            timestamp=datetime.fromisoformat(row[1]),
            event_type=AuditEventType(row[2]),
            severity=AuditSeverity(row[3]),
            entity_type=row[4],
            entity_id=row[5],
            correlation_id=UUID(row[6]) if row[6] else None,
            description=row[7],
            details=json.loads(row[8]) if row[8] else {},
            error_code=row[9],
            error_message=row[10],
            is_user_action=bool(row[11]),
        )


class AuditEventBuilder:
    """
    Factory methods, one per event type, so call sites stay one line.

    Usage:
        event = AuditEventBuilder.transaction_created(txn, correlation_id)
        event = AuditEventBuilder.pin_rejected(failures, correlation_id)
    """

    @staticmethod
    def category_created(
        category_id: int,
        name: str,
        currency: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"Category created: {name} ({currency})",
            details={"name": name, "currency": currency},
            is_user_action=True,
        )

    @staticmethod
    def category_updated(
        category_id: int,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_UPDATED,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"Category {category_id} updated",
            details={"changes": changes},
            is_user_action=True,
        )

    @staticmethod
    def category_deleted(
        category_id: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETED,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"Category {category_id} deleted",
            is_user_action=True,
        )

    @staticmethod
    def account_created(
        account_id: int,
        category_id: int,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account created: {name}",
            details={"category_id": category_id, "name": name},
            is_user_action=True,
        )

    @staticmethod
    def account_updated(
        account_id: int,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account {account_id} updated",
            details={"changes": changes},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(
        account_id: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account {account_id} deleted",
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        transaction_id: int,
        account_id: int,
        sequence_number: int,
        signed_amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction #{sequence_number} recorded: {signed_amount}",
            details={
                "account_id": account_id,
                "sequence_number": sequence_number,
                "signed_amount": signed_amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        transaction_id: int,
        account_id: int,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction {transaction_id} edited",
            details={"account_id": account_id, "changes": changes},
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: int,
        account_id: int,
        sequence_number: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction #{sequence_number} deleted",
            details={"account_id": account_id, "sequence_number": sequence_number},
            is_user_action=True,
        )

    @staticmethod
    def balances_recomputed(
        account_id: int,
        updated_count: int,
        new_balance: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_RECOMPUTED,
            severity=AuditSeverity.DEBUG,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Recomputed {updated_count} later snapshots",
            details={"updated_count": updated_count, "balance": new_balance},
        )

    @staticmethod
    def mutation_failed(
        operation: str,
        error: Exception,
        entity_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected",
            error_code=type(error).__name__,
            error_message=str(error),
            details={"operation": operation},
        )

    @staticmethod
    def pin_verified(correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIN_VERIFIED,
            entity_type="gate",
            correlation_id=correlation_id,
            description="PIN accepted, ledger unlocked",
            is_user_action=True,
        )

    @staticmethod
    def pin_rejected(
        consecutive_failures: int,
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIN_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="gate",
            correlation_id=correlation_id,
            description=f"PIN rejected ({reason})",
            details={"consecutive_failures": consecutive_failures, "reason": reason},
            is_user_action=True,
        )

    @staticmethod
    def pin_throttled(
        retry_after_seconds: float,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIN_THROTTLED,
            severity=AuditSeverity.WARNING,
            entity_type="gate",
            correlation_id=correlation_id,
            description=f"PIN attempt refused during cool-down ({retry_after_seconds:.0f}s left)",
            details={"retry_after_seconds": retry_after_seconds},
            is_user_action=True,
        )

    @staticmethod
    def pin_changed(enabled: bool, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIN_CHANGED,
            entity_type="settings",
            correlation_id=correlation_id,
            description="PIN set" if enabled else "PIN disabled",
            details={"pin_enabled": enabled},
            is_user_action=True,
        )

    @staticmethod
    def settings_updated(
        fields: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_UPDATED,
            entity_type="settings",
            correlation_id=correlation_id,
            description=f"Settings updated: {', '.join(fields)}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def reference_skipped(
        entity_type: str,
        entity_id: int,
        missing: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFERENCE_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Skipped {entity_type} {entity_id}: missing {missing}",
            details={"missing": missing},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
