"""Schemas for the legacy verbal-consent JSON export.

The export is a list of per-patient documents with camelCase keys.
Timestamps appear either as ISO-8601 strings or as exported
``{"_seconds": ..., "_nanoseconds": ...}`` objects.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel


def _parse_timestamp(value: Any) -> Any:
    if isinstance(value, dict):
        seconds = value.get("_seconds", value.get("seconds"))
        if seconds is None:
            raise ValueError("Timestamp object has no seconds")
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return value


LegacyTimestamp = Annotated[datetime, BeforeValidator(_parse_timestamp)]


class _LegacyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LegacyConsentDetails(_LegacyModel):
    obtained_by: str | None = None
    patient_response: Literal["authorized", "denied", "unable_to_respond"]
    witness_name: str | None = None
    notes: str | None = None


class LegacyTimestamps(_LegacyModel):
    consent_obtained: LegacyTimestamp


class LegacyValidity(_LegacyModel):
    status: Literal["active", "withdrawn", "expired"] = "active"
    withdrawn_date: LegacyTimestamp | None = None
    withdrawn_by: str | None = None


class LegacyVerbalConsent(_LegacyModel):
    """One document from the legacy verbal-consent collection."""

    consent_id: str
    patient_id: str
    physiotherapist_id: str | None = None
    consent_details: LegacyConsentDetails
    timestamps: LegacyTimestamps
    validity: LegacyValidity = LegacyValidity()
