"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every gate decision is logged.
This provides:
1. Complete traceability of balances back to the edits that produced them
2. Debugging capability
3. A visible history of failed unlock attempts

The audit logger:
- Is async to match the storage layer
- Gracefully handles failures (a broken audit sink never blocks a ledger write)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from daftar.config.settings import LoggingSettings
from daftar.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from daftar.services.storage import AuditStorageInterface


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Args:
        settings: Logging settings; defaults are read from the environment
    """
    settings = settings or LoggingSettings()

    logging.basicConfig(format="%(message)s", level=getattr(logging, settings.level))
    logging.getLogger().setLevel(getattr(logging, settings.level))

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Writes ledger and gate events to the log and the audit table.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit table of the storage backend (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("daftar.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        The structlog line is always emitted; the audit row only when a
        storage backend was given.

        Returns False only when the audit row could not be written.
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Audit failures never propagate into the ledger
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_category_created(
        self,
        category_id: int,
        name: str,
        currency: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.category_created(
            category_id=category_id,
            name=name,
            currency=currency,
            correlation_id=correlation_id,
        ))

    async def log_category_updated(
        self,
        category_id: int,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.category_updated(
            category_id=category_id,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_category_deleted(
        self,
        category_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.category_deleted(
            category_id=category_id,
            correlation_id=correlation_id,
        ))

    async def log_account_created(
        self,
        account_id: int,
        category_id: int,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_created(
            account_id=account_id,
            category_id=category_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_account_updated(
        self,
        account_id: int,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_updated(
            account_id=account_id,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_account_deleted(
        self,
        account_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_deleted(
            account_id=account_id,
            correlation_id=correlation_id,
        ))

    async def log_transaction_created(
        self,
        transaction_id: int,
        account_id: int,
        sequence_number: int,
        signed_amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a newly recorded transaction."""
        await self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            account_id=account_id,
            sequence_number=sequence_number,
            signed_amount=signed_amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_updated(
        self,
        transaction_id: int,
        account_id: int,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            account_id=account_id,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        transaction_id: int,
        account_id: int,
        sequence_number: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            account_id=account_id,
            sequence_number=sequence_number,
            correlation_id=correlation_id,
        ))

    async def log_balances_recomputed(
        self,
        account_id: int,
        updated_count: int,
        new_balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a cascade of snapshot rewrites after a back-dated edit."""
        await self.log(AuditEventBuilder.balances_recomputed(
            account_id=account_id,
            updated_count=updated_count,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))

    async def log_mutation_failed(
        self,
        operation: str,
        error: Exception,
        entity_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_failed(
            operation=operation,
            error=error,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_pin_verified(self, correlation_id: Optional[UUID] = None) -> None:
        await self.log(AuditEventBuilder.pin_verified(correlation_id=correlation_id))

    async def log_pin_rejected(
        self,
        consecutive_failures: int,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.pin_rejected(
            consecutive_failures=consecutive_failures,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_pin_throttled(
        self,
        retry_after_seconds: float,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.pin_throttled(
            retry_after_seconds=retry_after_seconds,
            correlation_id=correlation_id,
        ))

    async def log_pin_changed(self, enabled: bool, correlation_id: Optional[UUID] = None) -> None:
        await self.log(AuditEventBuilder.pin_changed(enabled=enabled, correlation_id=correlation_id))

    async def log_settings_updated(
        self,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settings_updated(fields=fields, correlation_id=correlation_id))

    async def log_reference_skipped(
        self,
        entity_type: str,
        entity_id: int,
        missing: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a record left out of a read model because its parent is gone."""
        await self.log(AuditEventBuilder.reference_skipped(
            entity_type=entity_type,
            entity_id=entity_id,
            missing=missing,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    New id grouping the events of one user action.

    Use this at the start of a new user action (e.g., recording a payment).
    Pass it to every ledger call made on behalf of that action.
    """
    return uuid4()


configure_logging(LoggingSettings())
