"""Append-only consent ledger.

The store exposes typed ledger variants; rows are never updated or
deleted. Callers are responsible for the care-team check before reading.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.consent import ConsentRecord, ConsentRecordKind
from app.schemas.consent import DECISION_KINDS, ENTRY_TYPES, ConsentEntry


def to_entry(record: ConsentRecord) -> ConsentEntry:
    """Convert a ledger row into its typed variant."""
    kind = record.kind.value if hasattr(record.kind, "value") else record.kind
    return ENTRY_TYPES[kind].model_validate(record, from_attributes=True)


class ConsentRecordStore:
    """Reads and appends consent ledger entries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        entry: ConsentEntry,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConsentRecord:
        """Add an entry to the ledger.

        The row is flushed but not committed so it can share a
        transaction with token consumption and its audit event.
        """
        data = entry.model_dump(exclude={"id"})
        if data.get("decline_reasons") is not None:
            data["decline_reasons"] = [
                r.value if hasattr(r, "value") else r for r in data["decline_reasons"]
            ]

        record = ConsentRecord(
            ip_address=ip_address,
            user_agent=user_agent,
            **data,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def history(self, patient_id: str) -> list[ConsentEntry]:
        """Return every ledger entry for a patient, oldest first."""
        result = await self.session.execute(
            select(ConsentRecord)
            .where(ConsentRecord.patient_id == patient_id)
            .order_by(ConsentRecord.consent_date.asc(), ConsentRecord.created_at.asc())
        )
        return [to_entry(r) for r in result.scalars().all()]

    async def latest_decision(self, patient_id: str) -> ConsentEntry | None:
        """Return the most recent granted, declined or withdrawn entry.

        Consent requests are not decisions and are skipped, so sending a
        new link never hides an existing grant.
        """
        result = await self.session.execute(
            select(ConsentRecord)
            .where(ConsentRecord.patient_id == patient_id)
            .where(ConsentRecord.kind.in_(sorted(DECISION_KINDS)))
            .order_by(ConsentRecord.consent_date.desc(), ConsentRecord.created_at.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return to_entry(record) if record else None

    async def latest_request(self, patient_id: str) -> ConsentEntry | None:
        """Return the most recent consent request sent to a patient."""
        result = await self.session.execute(
            select(ConsentRecord)
            .where(ConsentRecord.patient_id == patient_id)
            .where(ConsentRecord.kind == ConsentRecordKind.SMS_REQUESTED.value)
            .order_by(ConsentRecord.consent_date.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return to_entry(record) if record else None

    async def has_legacy_entry(self, legacy_id: str) -> bool:
        """Check whether a legacy consent has already been imported."""
        result = await self.session.execute(
            select(ConsentRecord.id).where(ConsentRecord.legacy_id == legacy_id)
        )
        return result.scalar_one_or_none() is not None
