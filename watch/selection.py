from __future__ import annotations

from typing import List, Sequence

from models.schema import ALL_CLINICS, ClinicProgress, Division


def prioritize_target(rows: Sequence[ClinicProgress], target_clinic_code: str) -> List[ClinicProgress]:
    """
    Stable partition: rows of the watched clinic first, everything else after.
    Relative order inside both groups is preserved; the input is never mutated.
    """
    if target_clinic_code == ALL_CLINICS:
        return list(rows)
    first = [r for r in rows if r.clinic_code == target_clinic_code]
    rest = [r for r in rows if r.clinic_code != target_clinic_code]
    return first + rest


def filter_divisions(divisions: Sequence[Division], term: str) -> List[Division]:
    # A sub-division survives if its own name or its parent's name contains the term.
    term = (term or "").strip()
    out: List[Division] = []
    for div in divisions:
        subs = [s for s in div.sub_divisions if term in s.name or term in div.name]
        if subs:
            out.append(div.model_copy(update={"sub_divisions": subs}))
    return out
