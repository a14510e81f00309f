"""Patient model and the care-team relationship that scopes access to it."""

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class Patient(Base, TimestampMixin):
    """Patient registered with the clinic."""

    __tablename__ = "patients"

    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    phone_e164: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    preferred_language: Mapped[str | None] = mapped_column(
        String(10),
        nullable=True,  # BCP 47 tag, e.g. "fr-CA"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    care_team: Mapped[list["CareTeamMember"]] = relationship(
        "CareTeamMember",
        back_populates="patient",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        """Return patient's full name."""
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Patient {self.id}>"


class CareTeamMember(Base, TimestampMixin):
    """Authorized relationship between a staff member and a patient.

    A clinician may only read or act on consent data for patients they
    are linked to here.
    """

    __tablename__ = "care_team_members"
    __table_args__ = (UniqueConstraint("patient_id", "user_id"),)

    patient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    patient: Mapped["Patient"] = relationship(
        "Patient",
        back_populates="care_team",
    )

    def __repr__(self) -> str:
        return f"<CareTeamMember patient={self.patient_id} user={self.user_id}>"
