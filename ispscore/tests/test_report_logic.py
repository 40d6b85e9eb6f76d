# tests/test_report_logic.py
import itertools
from datetime import date

from ispscore.identity import ReportContext, employees_from_records
from ispscore.report_logic import (
    dedupe_records,
    filter_window,
    group_by_technician,
    normalize_order,
    render_txt_report,
    score_orders,
    write_txt_report,
)
from ispscore.report_models import Rule, ScoringPolicy
from ispscore.tests.erp_fakes import order

POLICY = ScoringPolicy()


def _ctx():
    return ReportContext(
        employees=employees_from_records([
            {"id": "10", "funcionario": "Zé Carlos"},
            {"id": "11", "funcionario": "ana Paula"},
            {"id": "12", "funcionario": "Bruno"},
        ]),
        rules={"7": Rule(subject_id="7", points=5)},
        policy=POLICY,
    )


def _scored(records):
    orders = [normalize_order(r, POLICY) for r in dedupe_records(records)]
    return score_orders(orders, _ctx())


def test_normalize_turns_sentinel_into_none():
    o = normalize_order(order(1, fechamento="0000-00-00 00:00:00", final="0000-00-00 00:00:00", status="A"), POLICY)
    assert o.closed_at is None
    assert o.reopened_at is None
    assert o.is_open


def test_dedupe_is_order_invariant():
    snapshots = [
        order(1, fechamento="2024-06-10 10:00:00", final="2024-06-01 10:00:00"),
        order(1, fechamento="2024-06-01 10:00:00", final="2024-06-01 10:00:00", status="EN"),
        order(1, fechamento="0000-00-00 00:00:00", final="0000-00-00 00:00:00", status="A"),
    ]
    results = {
        tuple(sorted(r.items()))
        for perm in itertools.permutations(snapshots)
        for r in dedupe_records(list(perm))
    }
    assert len(results) == 1
    (chosen,) = results
    assert dict(chosen)["data_fechamento"] == "2024-06-10 10:00:00"


def test_dedupe_keeps_first_appearance_order():
    out = dedupe_records([order(2), order(1), order(2), order(3)])
    assert [r["id"] for r in out] == ["2", "1", "3"]


def test_same_id_from_two_sources_flags_reopening():
    # balde por cierre trae la versión recerrada; balde 'EN' trae la anterior
    records = [
        order(1, fechamento="2024-06-10 10:00:00", final="2024-06-01 10:00:00"),
        order(1, fechamento="2024-06-01 10:00:00", final="2024-06-01 10:00:00", status="EN"),
    ]
    (s,) = _scored(records)
    assert s.order.reopened_at is not None
    assert s.points == -5


def test_range_and_bucket_copies_with_fifteen_minute_gap():
    records = [
        order(1, fechamento="2024-03-01 10:00:00", status="F"),
        order(1, fechamento="2024-03-01 10:05:00", final="2024-03-01 09:50:00", status="EN"),
    ]
    (s,) = _scored(records)
    assert s.order.closed_at.strftime("%H:%M") == "09:50"
    assert s.order.reopened_at.strftime("%H:%M") == "10:05"


def test_three_orders_with_five_points_rule():
    rows = group_by_technician(_scored([order(1), order(2), order(3)]))
    assert len(rows) == 1
    assert rows[0].total_orders == 3
    assert rows[0].total_points == 15


def test_filter_window_closing_mode_keeps_only_closing_statuses():
    orders = [
        normalize_order(order(1, status="F"), POLICY),
        normalize_order(order(2, status="EN"), POLICY),
        normalize_order(order(3, status="A"), POLICY),
        normalize_order(order(4, fechamento="2024-07-01 00:00:01"), POLICY),
    ]
    out = filter_window(orders, date(2024, 6, 1), date(2024, 6, 30), "closing")
    assert [o.id for o in out] == ["1", "2"]


def test_filter_window_opening_mode():
    orders = [
        normalize_order(order(1, abertura="2024-05-31 23:59:59", status="A"), POLICY),
        normalize_order(order(2, abertura="2024-06-30 23:59:59", status="A"), POLICY),
    ]
    out = filter_window(orders, date(2024, 6, 1), date(2024, 6, 30), "opening")
    assert [o.id for o in out] == ["2"]


def test_technician_filter_without_match_is_empty():
    orders = [normalize_order(order(1), POLICY)]
    assert score_orders(orders, _ctx(), technician_id="42") == []


def test_department_filter_contains():
    orders = [normalize_order(order(1), POLICY)]
    assert score_orders(orders, _ctx(), department="função", department_match="contains") == []
    assert len(score_orders(orders, _ctx(), department="sin FUNCIÓN", department_match="contains")) == 1


def test_sort_by_name_is_case_insensitive():
    rows = group_by_technician(_scored([order(1, "10"), order(2, "11"), order(3, "12")]))
    assert [r.technician_name for r in rows] == ["ana Paula", "Bruno", "Zé Carlos"]


def test_sort_by_points_is_stable():
    records = [order(1, "10"), order(2, "11"), order(3, "12"), order(4, "12")]
    rows = group_by_technician(_scored(records), sort_by="POINTS")
    # 12 tiene 10 puntos; 10 y 11 empatan y conservan el orden de aparición
    assert [r.technician_id for r in rows] == ["12", "10", "11"]


def test_analytical_rows_carry_orders():
    rows = group_by_technician(_scored([order(1), order(2)]), analytical=True)
    assert [s.order.id for s in rows[0].orders] == ["1", "2"]
    assert group_by_technician(_scored([order(1)]))[0].orders == []


def test_render_txt_report():
    rows = group_by_technician(_scored([order(1, "10"), order(2, "11")]), sort_by="POINTS", analytical=True)
    txt = render_txt_report(rows, "Reporte Junio", analytical=True)
    lines = txt.splitlines()
    assert lines[0] == "Reporte Junio"
    assert lines[1] == "-" * len("Reporte Junio")
    assert "Técnicos: 2" in txt
    assert "Zé Carlos" in txt
    assert "#1" in txt


def test_render_txt_report_empty():
    assert "Ningún dato" in render_txt_report([], "Vacío")


def test_write_txt_report(tmp_path):
    out = tmp_path / "sub" / "r.txt"
    write_txt_report(str(out), [], "Vacío")
    assert out.read_text(encoding="utf-8").startswith("Vacío")
