"""In-memory conflict values passed between the matcher, resolver and store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from feedback_app.models.hris.schema import ConflictKind, ResolutionChoice

from .identity import IdentitySnapshot
from .payloads import ConflictDetail
from .records import ExternalRecord

# Resolution choices an administrator may submit for each conflict kind.
ALLOWED_RESOLUTIONS: dict[ConflictKind, frozenset[ResolutionChoice]] = {
    ConflictKind.EMAIL_CHANGE: frozenset(
        {ResolutionChoice.KEEP_SYSTEM, ResolutionChoice.USE_HRIS, ResolutionChoice.MERGE}
    ),
    ConflictKind.DUPLICATE_EMAIL: frozenset(
        {
            ResolutionChoice.KEEP_SYSTEM,
            ResolutionChoice.USE_HRIS,
            ResolutionChoice.MERGE,
            ResolutionChoice.CREATE_NEW,
        }
    ),
    ConflictKind.DUPLICATE_EMPLOYEE_ID: frozenset(
        {ResolutionChoice.KEEP_SYSTEM, ResolutionChoice.USE_HRIS, ResolutionChoice.MERGE}
    ),
    ConflictKind.DATA_MISMATCH: frozenset(
        {ResolutionChoice.KEEP_SYSTEM, ResolutionChoice.USE_HRIS, ResolutionChoice.MERGE}
    ),
    ConflictKind.VILLAGE_NOT_FOUND: frozenset(
        {ResolutionChoice.KEEP_SYSTEM, ResolutionChoice.USE_HRIS, ResolutionChoice.CREATE_NEW}
    ),
}


@dataclass(frozen=True)
class DetectedConflict:
    kind: ConflictKind
    record: ExternalRecord
    detail: ConflictDetail
    candidate: IdentitySnapshot | None = None

    @property
    def fingerprint(self) -> str:
        """Stable key used to avoid re-filing the same conflict on every run."""
        candidate_id = self.candidate.id if self.candidate else "-"
        if self.kind == ConflictKind.VILLAGE_NOT_FOUND:
            # The first run creates the identity the next run matches against.
            candidate_id = "-"
        return f"{self.kind.value}|{self.record.employee_id}|{candidate_id}|{self.detail.key()}"

    def as_log_extra(self) -> dict[str, Any]:
        return {
            "hris_conflict_kind": self.kind.value,
            "hris_employee_id": self.record.employee_id,
            "hris_candidate_id": self.candidate.id if self.candidate else None,
        }


@dataclass(frozen=True)
class AutoResolution:
    """Policy decision for a conflict that is safe to settle without an administrator."""

    resolution: ResolutionChoice
    notes: str
    apply_village: bool = True
