from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .audit_log import AuditLogStore, LogEntry, new_entry
from .checks import Check, Entity
from .errors import SupacheckError

LOGGER = logging.getLogger("supacheck.checks")


@dataclass
class CheckOutcome:
    check_type: str
    entities: list[Entity] = field(default_factory=list)
    error: SupacheckError | None = None
    audit_error: str | None = None
    remediation: dict | None = None
    extra: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def non_compliant(self) -> list[Entity]:
        return [entity for entity in self.entities if not entity.compliant]

    def to_payload(self) -> dict:
        if self.error is not None:
            payload = {
                "check": self.check_type,
                "error": self.error.message,
                "code": self.error.code,
                "details": self.error.details,
            }
        else:
            payload = {
                "check": self.check_type,
                "entities": [entity.to_dict() for entity in self.entities],
                "non_compliant": [entity.to_dict() for entity in self.non_compliant],
                **self.extra,
            }
        if self.remediation is not None:
            payload["remediation"] = self.remediation
        if self.audit_error is not None:
            payload["audit_error"] = self.audit_error
        return payload


class ComplianceService:
    """Runs checks and remediations and records each outcome in the audit log."""

    def __init__(self, audit_store: AuditLogStore) -> None:
        self.audit_store = audit_store

    async def run_check(self, check: Check, project_ref: str, account: str) -> CheckOutcome:
        outcome = CheckOutcome(check_type=check.check_type)
        try:
            outcome.entities = await check.evaluate(project_ref)
        except SupacheckError as error:
            LOGGER.warning(
                "%s failed for project=%s: %s", check.label, project_ref, error.message
            )
            outcome.error = error
            entries = [self._error_entry(check, check.label, error)]
        else:
            outcome.extra = check.summarize(outcome.entities)
            entries = [
                new_entry(check.check_type, check.label, check.describe(entity))
                for entity in outcome.entities
            ]
            LOGGER.info(
                "%s project=%s evaluated=%s non_compliant=%s",
                check.label,
                project_ref,
                len(outcome.entities),
                len(outcome.non_compliant),
            )

        outcome.audit_error = await self._record(account, entries)
        return outcome

    async def remediate(
        self,
        check: Check,
        project_ref: str,
        account: str,
        identifier: str,
        action: str,
    ) -> CheckOutcome:
        label = check.remediations.get(action, action)
        try:
            result = await check.remediate(project_ref, identifier, action)
        except SupacheckError as error:
            LOGGER.warning(
                "%s failed for project=%s target=%s: %s",
                label,
                project_ref,
                identifier,
                error.message,
            )
            outcome = CheckOutcome(check_type=check.check_type, error=error)
            outcome.audit_error = await self._record(
                account, [self._error_entry(check, label, error, target=identifier)]
            )
            return outcome

        LOGGER.info("%s applied project=%s target=%s", label, project_ref, identifier)
        audit_error = await self._record(account, [new_entry(check.check_type, label, result)])

        # state shown after a remediation always comes from a fresh read
        outcome = await self.run_check(check, project_ref, account)
        outcome.remediation = result
        outcome.audit_error = outcome.audit_error or audit_error
        return outcome

    async def _record(self, account: str, entries: list[LogEntry]) -> str | None:
        try:
            await self.audit_store.append(account, entries)
        except (SupacheckError, OSError) as error:
            LOGGER.exception("Failed to append audit log entries for account=%s", account)
            return f"Audit log could not be written: {error}"
        return None

    @staticmethod
    def _error_entry(
        check: Check,
        label: str,
        error: SupacheckError,
        *,
        target: str | None = None,
    ) -> LogEntry:
        result = {"error": error.message, "code": error.code}
        if error.details is not None:
            result["details"] = error.details
        if target is not None:
            result["target"] = target
        return new_entry(check.check_type, f"{label} Error", result)
