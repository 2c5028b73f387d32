from models.schema import ClinicProgress, WatchState
from watch.engine import evaluate, notified_key


def _row(clinic, seq, shift="1", name=None, doctor="王醫師"):
    return ClinicProgress.model_validate(
        {
            "ClinicCode": clinic,
            "ShiftCode": shift,
            "ClinicName": name or f"診間{clinic}",
            "DoctorName": doctor,
            "CurrentVisitSeq": seq,
        }
    )


def _watch(ticket="50", before=5, target="all", enabled=True):
    return WatchState(
        target_clinic_code=target,
        user_ticket_number=ticket,
        notify_before=before,
        notifications_enabled=enabled,
    )


def test_fires_inside_window():
    res = evaluate([_row("X", "47")], _watch(), set())
    assert len(res.alerts) == 1
    alert = res.alerts[0]
    assert alert.distance == 3
    assert alert.key == "X-1-50"
    assert alert.clinic_name == "診間X"
    assert alert.doctor_name == "王醫師"
    assert alert.current_visit_seq == "47"
    assert res.notified_keys == {"X-1-50"}


def test_window_edges():
    w = _watch(before=5)
    assert len(evaluate([_row("X", "45")], w, set()).alerts) == 1  # distance 5
    assert evaluate([_row("X", "44")], w, set()).alerts == []  # distance 6
    assert evaluate([_row("X", "50")], w, set()).alerts == []  # distance 0
    assert evaluate([_row("X", "55")], w, set()).alerts == []  # already passed


def test_fires_once_while_distance_stays_in_window():
    w = _watch()
    keys = set()
    fired = 0
    for seq in ("46", "47", "47", "49"):
        res = evaluate([_row("X", seq)], w, keys)
        fired += len(res.alerts)
        keys = res.notified_keys
    assert fired == 1


def test_does_not_mutate_callers_keys():
    keys = set()
    evaluate([_row("X", "48")], _watch(), keys)
    assert keys == set()


def test_new_target_number_is_a_new_key():
    res = evaluate([_row("X", "48")], _watch(ticket="50"), set())
    res2 = evaluate([_row("X", "48")], _watch(ticket="51"), res.notified_keys)
    assert len(res2.alerts) == 1
    assert res2.notified_keys == {"X-1-50", "X-1-51"}


def test_target_clinic_filters_rows():
    rows = [_row("X", "48"), _row("Y", "48")]
    res = evaluate(rows, _watch(target="Y"), set())
    assert [a.clinic_code for a in res.alerts] == ["Y"]


def test_all_clinics_alerts_each_row_separately():
    rows = [_row("X", "48"), _row("Y", "49"), _row("X", "47", shift="2")]
    res = evaluate(rows, _watch(), set())
    assert {a.key for a in res.alerts} == {"X-1-50", "Y-1-50", "X-2-50"}


def test_unparseable_row_is_skipped_others_still_evaluated():
    rows = [_row("X", "暫停"), _row("Y", "48"), _row("Z", None)]
    res = evaluate(rows, _watch(), set())
    assert [a.clinic_code for a in res.alerts] == ["Y"]


def test_preconditions():
    rows = [_row("X", "48")]
    assert evaluate(rows, _watch(enabled=False), set()).alerts == []
    assert evaluate(rows, _watch(ticket=""), set()).alerts == []
    res = evaluate(rows, _watch(ticket="abc"), {"k"})
    assert res.alerts == []
    assert res.notified_keys == {"k"}


def test_notified_key_format():
    assert notified_key("0123", "2", 17) == "0123-2-17"
