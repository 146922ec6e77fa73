"""
Capability index: normalizes supplier declarations into comparable terms.

Pure functions, no database access.
"""
from typing import Iterable, List, Sequence, Tuple
from pydantic import BaseModel, Field

from marketplace.services.records import CapabilityRecord, DocumentRecord


def normalize_term(value) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def normalize_terms(values: Iterable) -> List[str]:
    """
    Lowercase, trim and dedupe a list of terms.

    Non-strings and empty values are dropped; first-seen order is kept so
    score explanations stay stable between calls.
    """
    if values is None:
        values = []
    elif isinstance(values, str):
        values = [values]
    seen = set()
    result = []
    for value in values:
        term = normalize_term(value)
        if term and term not in seen:
            seen.add(term)
            result.append(term)
    return result


def fuzzy_match(left: str, right: str) -> bool:
    """Equal, or one contains the other ("cnc" ~ "cnc machining")."""
    if not left or not right:
        return False
    return left == right or left in right or right in left


def find_match(term: str, candidates: Sequence[str]):
    for candidate in candidates:
        if fuzzy_match(term, candidate):
            return candidate
    return None


def match_terms(required: Sequence[str], available: Sequence[str]) -> Tuple[List[str], List[str]]:
    """
    Split required terms into (matched, missing) against what is available.

    Both sides are expected to be normalized already.
    """
    matched, missing = [], []
    for term in required:
        if find_match(term, available) is not None:
            matched.append(term)
        else:
            missing.append(term)
    return matched, missing


def overlaps(left: Sequence[str], right: Sequence[str]) -> bool:
    return any(find_match(term, right) is not None for term in left)


class CapabilityProfile(BaseModel):
    """Everything a supplier declares, pooled across capability rows."""
    supplier_id: int
    processes: List[str] = Field(default_factory=list)
    materials: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    document_types: List[str] = Field(default_factory=list)

    @property
    def certification_evidence(self) -> List[str]:
        return normalize_terms(list(self.certifications) + list(self.document_types))


def build_profile(
    supplier_id: int,
    capabilities: Sequence[CapabilityRecord],
    documents: Sequence[DocumentRecord] = (),
) -> CapabilityProfile:
    processes, materials, certifications = [], [], []
    for capability in capabilities:
        processes.append(capability.process)
        materials.extend(capability.materials)
        certifications.extend(capability.certifications)

    return CapabilityProfile(
        supplier_id=supplier_id,
        processes=normalize_terms(processes),
        materials=normalize_terms(materials),
        certifications=normalize_terms(certifications),
        document_types=normalize_terms(doc.doc_type for doc in documents),
    )
