"""One-time import of legacy verbal consents into the consent ledger.

Each legacy document becomes a ``VerbalGranted`` or ``VerbalDeclined``
entry; a withdrawn or expired document also gets a ``ConsentWithdrawn``
entry so the imported patient's current status matches the legacy one.
Imports are idempotent on ``legacy_id``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_event import ActorType
from app.models.consent import ConsentMethod, DeclineReason, RecordSource
from app.models.patient import Patient
from app.schemas.consent import ConsentEntry, ConsentWithdrawn, VerbalDeclined, VerbalGranted
from app.schemas.legacy_consent import LegacyVerbalConsent
from app.services.audit import ConsentAuditAction, write_audit_event
from app.services.consent_records import ConsentRecordStore

logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    """Outcome of an import run."""

    imported: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "imported": self.imported,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "errors": len(self.errors),
        }


class LegacyConsentImporter:
    """Maps legacy verbal-consent documents onto ledger entries.

    Args:
        session: Database session
        text_version: Text version recorded on imported entries
        jurisdiction: Jurisdiction recorded on imported entries
    """

    def __init__(self, session: AsyncSession, text_version: str, jurisdiction: str) -> None:
        self.session = session
        self.text_version = text_version
        self.jurisdiction = jurisdiction
        self.records = ConsentRecordStore(session)

    def to_entries(self, legacy: LegacyVerbalConsent) -> list[ConsentEntry]:
        """Build the ledger entries for one legacy document.

        Documents where the patient was unable to respond carry no
        decision and produce no entries.
        """
        details = legacy.consent_details
        common = {
            "patient_id": legacy.patient_id,
            "professional_id": legacy.physiotherapist_id,
            "text_version": self.text_version,
            "jurisdiction": self.jurisdiction,
            "consent_date": legacy.timestamps.consent_obtained,
            "source": RecordSource.LEGACY_IMPORT,
            "witness_statement": details.witness_name,
        }

        if details.patient_response == "authorized":
            entries: list[ConsentEntry] = [VerbalGranted(legacy_id=legacy.consent_id, **common)]
        elif details.patient_response == "denied":
            # Legacy declines carry no reason codes
            entries = [
                VerbalDeclined(
                    legacy_id=legacy.consent_id,
                    decline_reasons=[DeclineReason.OTHER],
                    decline_notes=details.notes,
                    **common,
                )
            ]
        else:
            return []

        validity = legacy.validity
        if details.patient_response == "authorized" and validity.status != "active":
            entries.append(
                ConsentWithdrawn(
                    legacy_id=f"{legacy.consent_id}:{validity.status}",
                    patient_id=legacy.patient_id,
                    professional_id=legacy.physiotherapist_id,
                    text_version=self.text_version,
                    jurisdiction=self.jurisdiction,
                    consent_date=validity.withdrawn_date or legacy.timestamps.consent_obtained,
                    source=RecordSource.LEGACY_IMPORT,
                    consent_method=ConsentMethod.VERBAL,
                    withdrawal_reason=(
                        "Legacy consent expired"
                        if validity.status == "expired"
                        else validity.withdrawn_by
                    ),
                )
            )
        return entries

    async def import_documents(
        self,
        documents: list[dict[str, Any]],
        dry_run: bool = False,
    ) -> ImportSummary:
        """Import a list of raw legacy documents.

        Args:
            documents: Parsed JSON export
            dry_run: Validate and count without writing

        Returns:
            ImportSummary for the run
        """
        summary = ImportSummary()
        known_patients: dict[str, bool] = {}

        for index, raw in enumerate(documents):
            try:
                legacy = LegacyVerbalConsent.model_validate(raw)
            except ValidationError as e:
                summary.errors.append(f"document {index}: {e.error_count()} validation errors")
                logger.warning(f"Skipping invalid legacy consent at index {index}")
                continue

            if legacy.patient_id not in known_patients:
                known_patients[legacy.patient_id] = (
                    await self.session.get(Patient, legacy.patient_id) is not None
                )
            if not known_patients[legacy.patient_id]:
                summary.skipped += 1
                logger.warning(
                    "Legacy consent references unknown patient",
                    extra={"patient_id": legacy.patient_id},
                )
                continue

            entries = self.to_entries(legacy)
            if not entries:
                summary.skipped += 1
                continue

            for entry in entries:
                if await self.records.has_legacy_entry(entry.legacy_id):
                    summary.duplicates += 1
                    continue
                summary.imported += 1
                if dry_run:
                    continue

                record = await self.records.append(entry)
                await write_audit_event(
                    session=self.session,
                    actor_type=ActorType.SYSTEM,
                    actor_id=None,
                    action=ConsentAuditAction.LEGACY_IMPORTED,
                    action_category="consent",
                    entity_type="consent_record",
                    entity_id=record.id,
                    patient_id=entry.patient_id,
                    metadata={"legacy_id": entry.legacy_id, "kind": entry.kind},
                    commit=False,
                )

        if dry_run:
            await self.session.rollback()
        else:
            await self.session.commit()

        logger.info(f"Legacy consent import finished: {summary.as_dict()}")
        return summary
