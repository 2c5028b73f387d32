from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, FrozenSet, List, Sequence

from models.schema import ALL_CLINICS, ClinicProgress, WatchState
from watch.numbers import NotParseableNumberError, require_int

log = logging.getLogger("queuewatch.engine")


def notified_key(clinic_code: str, shift_code: str, target_number: int) -> str:
    return f"{clinic_code}-{shift_code}-{target_number}"


@dataclass(frozen=True)
class ProximityAlert:
    key: str
    clinic_code: str
    shift_code: str
    clinic_name: str
    doctor_name: str
    current_visit_seq: str
    target_number: int
    distance: int


@dataclass(frozen=True)
class EvaluationResult:
    alerts: List[ProximityAlert] = field(default_factory=list)
    notified_keys: FrozenSet[str] = frozenset()


def evaluate(
    rows: Sequence[ClinicProgress],
    watch: WatchState,
    notified_keys: AbstractSet[str],
) -> EvaluationResult:
    """
    Decide which rows warrant a proximity alert.

    Pure: the caller's key set is not modified; the returned set contains the old keys
    plus one key per alert fired. A row alerts when 0 < ticket - current <= notify_before
    and its (clinic, shift, ticket) key has not fired yet.
    """
    keys = frozenset(notified_keys)
    if not watch.notifications_enabled or not watch.user_ticket_number:
        return EvaluationResult(notified_keys=keys)
    try:
        target = require_int(watch.user_ticket_number)
    except NotParseableNumberError:
        return EvaluationResult(notified_keys=keys)

    alerts: List[ProximityAlert] = []
    fired = set(keys)
    skipped = 0
    for row in rows:
        if watch.target_clinic_code != ALL_CLINICS and row.clinic_code != watch.target_clinic_code:
            continue
        try:
            current = require_int(row.current_visit_seq)
        except NotParseableNumberError:
            skipped += 1
            continue

        distance = target - current
        key = notified_key(row.clinic_code, row.shift_code, target)
        if 0 < distance <= watch.notify_before and key not in fired:
            fired.add(key)
            alerts.append(
                ProximityAlert(
                    key=key,
                    clinic_code=row.clinic_code,
                    shift_code=row.shift_code,
                    clinic_name=row.clinic_name or row.clinic_code,
                    doctor_name=row.doctor_name or "",
                    current_visit_seq=row.current_visit_seq or "",
                    target_number=target,
                    distance=distance,
                )
            )

    if skipped:
        log.debug("rows_skipped_unparseable_seq", extra={"extra": {"event": "rows_skipped_unparseable_seq", "count": skipped}})
    return EvaluationResult(alerts=alerts, notified_keys=frozenset(fired))

