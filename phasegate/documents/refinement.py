"""
Refinement documents: the technical refinement a human signs off on.

Required fields:

    - WP_ID: WP-42
    - CLEARLY_COVERS_VERDICT: PASS | FAIL
    - CLEARLY_COVERS_REASON: <text>
    - ENRICHMENT_NEEDED: YES | NO
    - REASON_NO_ENRICHMENT: <text>          (when ENRICHMENT_NEEDED=NO)
    - PROPOSED_ENRICHMENT:                  (when ENRICHMENT_NEEDED=YES)
      ```
      <verbatim proposal>
      ```

plus the configured section headings. A PASS coverage verdict means the
existing policy already covers the work, so no enrichment may be requested;
a FAIL verdict means enrichment is required.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ..config import DEFAULT_REFINEMENT_SECTIONS
from ..errors import ValidationError
from .fields import LabeledDocument, is_placeholder, load_document, strip_code


@dataclass(frozen=True)
class RefinementDocument:
    work_item_id: str | None
    coverage_verdict: str | None  # "PASS" | "FAIL"
    coverage_reason: str | None
    enrichment_needed: bool | None
    reason_no_enrichment: str | None
    proposed_enrichment: str | None
    document: LabeledDocument

    @classmethod
    def from_document(cls, doc: LabeledDocument) -> RefinementDocument:
        verdict = strip_code(doc.get("CLEARLY_COVERS_VERDICT") or "").upper() or None
        enrichment = strip_code(doc.get("ENRICHMENT_NEEDED") or "").upper()
        return cls(
            work_item_id=strip_code(doc.get("WP_ID") or doc.get("WORK_ITEM_ID") or "") or None,
            coverage_verdict=verdict,
            coverage_reason=doc.get("CLEARLY_COVERS_REASON"),
            enrichment_needed={"YES": True, "NO": False}.get(enrichment),
            reason_no_enrichment=doc.get("REASON_NO_ENRICHMENT"),
            proposed_enrichment=doc.fenced_block_after("PROPOSED_ENRICHMENT"),
            document=doc,
        )

    def problems(
        self,
        *,
        expected_work_item_id: str | None = None,
        required_sections: Sequence[str] = DEFAULT_REFINEMENT_SECTIONS,
    ) -> list[str]:
        """Every completeness or consistency problem; empty when valid."""
        errors: list[str] = []
        if not self.document.body.isascii():
            errors.append("refinement contains non-ASCII characters")

        for heading in required_sections:
            if not self.document.has_heading(heading):
                errors.append(f"missing required section heading: {heading}")

        if self.work_item_id is None:
            errors.append("WP_ID is missing")
        elif expected_work_item_id and self.work_item_id != expected_work_item_id:
            errors.append(f"WP_ID mismatch: expected {expected_work_item_id}, got {self.work_item_id}")

        if self.coverage_verdict not in {"PASS", "FAIL"}:
            errors.append("CLEARLY_COVERS_VERDICT must be PASS or FAIL")
        if is_placeholder(self.coverage_reason):
            errors.append("CLEARLY_COVERS_REASON must be filled")

        if self.enrichment_needed is None:
            errors.append("ENRICHMENT_NEEDED must be YES or NO")
        elif self.enrichment_needed is False and is_placeholder(self.reason_no_enrichment):
            errors.append("REASON_NO_ENRICHMENT is required when ENRICHMENT_NEEDED=NO")
        elif self.enrichment_needed is True and is_placeholder(self.proposed_enrichment):
            errors.append("PROPOSED_ENRICHMENT block is required when ENRICHMENT_NEEDED=YES")

        if self.coverage_verdict == "PASS" and self.enrichment_needed is True:
            errors.append("CLEARLY_COVERS_VERDICT=PASS requires ENRICHMENT_NEEDED=NO")
        if self.coverage_verdict == "FAIL" and self.enrichment_needed is False:
            errors.append("CLEARLY_COVERS_VERDICT=FAIL requires ENRICHMENT_NEEDED=YES")
        return errors


def validate_refinement(
    path: Path,
    *,
    expected_work_item_id: str | None = None,
    required_sections: Sequence[str] = DEFAULT_REFINEMENT_SECTIONS,
) -> RefinementDocument:
    """Load and validate a refinement document, raising ValidationError with every problem."""
    refinement = RefinementDocument.from_document(load_document(path))
    errors = refinement.problems(
        expected_work_item_id=expected_work_item_id,
        required_sections=required_sections,
    )
    if errors:
        raise ValidationError(f"refinement {path.name} is incomplete or inconsistent", details=errors)
    return refinement
