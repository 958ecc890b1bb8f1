import pytest

from engines.risk import risk_category, risk_components, risk_score, run_risk


def test_weighted_score():
    # 20*0.4 + 5*0.3 + 3*5*0.2 + 10%*0.1
    assert risk_score(80, 5, 7, 10, 100) == pytest.approx(13.5)


def test_missing_quality_uses_default():
    assert risk_score(100, 0, None, 0, 100) == pytest.approx(3.0)
    assert risk_score(100, 0, 'n/a', 0, 100) == pytest.approx(3.0)


def test_no_work_orders_drops_rework_term():
    assert risk_components(100, 0, 10, 5, 0)['rework'] == 0
    assert risk_score(100, 0, 10, 5, 0) == 0


def test_worst_case_score():
    assert risk_score(0, 100, 0, 100, 100) == pytest.approx(40 + 30 + 10 + 10)


@pytest.mark.parametrize('score,category', [
    (100, 'Critical'), (70.0, 'Critical'), (69.9999, 'High'), (50.0, 'High'),
    (49.99, 'Medium'), (30.0, 'Medium'), (29.9999, 'Low'), (0, 'Low'),
])
def test_category_boundaries(score, category):
    assert risk_category(score)[0] == category


def test_recommendations():
    assert risk_category(75)[1] == 'Immediate action required'
    assert risk_category(55)[1] == 'Enhanced monitoring needed'
    assert risk_category(35)[1] == 'Standard monitoring'
    assert risk_category(5)[1] == 'Good performance'


def _proc(pid, wo, compliant, incidents=0, rework=0, quality=10.0):
    return {'procedure_id': pid, 'name': f'Procedure {pid}', 'category': 'Mechanical',
            'work_order_count': wo, 'compliant_count': compliant, 'incident_count': incidents,
            'rework_count': rework, 'avg_quality_score': quality, 'avg_duration': 2.4,
            'equipment_trip_count': 1}


def test_run_risk_orders_by_score_then_volume():
    out = run_risk([
        _proc('A', 100, 100),
        _proc('B', 200, 200),
        _proc('C', 10, 0),
    ])
    ids = [p['procedureId'] for p in out['procedures']]
    assert ids == ['C', 'B', 'A']
    top = out['procedures'][0]
    assert top['riskScore'] == 40.0
    assert top['riskCategory'] == 'Medium'
    assert top['recommendation'] == 'Standard monitoring'


def test_run_risk_skips_idle_procedures():
    out = run_risk([_proc('A', 0, 0), _proc('B', 20, 18, incidents=1, rework=2)])
    assert [p['procedureId'] for p in out['procedures']] == ['B']
    b = out['procedures'][0]
    assert b['incidentRate'] == 5.0
    assert b['reworkRatio'] == 0.1
    assert b['complianceRate'] == 90.0


def test_run_risk_is_deterministic():
    rows = [_proc('A', 37, 29, incidents=2, rework=3, quality=7.3), _proc('B', 11, 6, incidents=1, quality=6.1)]
    assert run_risk(rows) == run_risk(rows)


def test_category_follows_rounded_score():
    out = run_risk([_proc('A', 20, 18, incidents=1, rework=2, quality=7.4)])
    p = out['procedures'][0]
    assert p['riskCategory'] == risk_category(p['riskScore'])[0]


def test_summary_counts():
    out = run_risk([_proc('A', 10, 0, incidents=10, quality=0), _proc('B', 10, 10)])
    s = out['summary']
    assert s['critical'] == 1
    assert s['low'] == 1
    assert s['highestRisk'] == 'Procedure A'
    assert s['totalProcedures'] == 2


def test_summary_empty():
    out = run_risk([])
    assert out['procedures'] == []
    assert out['summary']['highestRisk'] == 'N/A'
    assert out['summary']['avgRisk'] == 0
