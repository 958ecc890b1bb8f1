import math

import pytest

from engines.trends import (classify, confidence_range, linear_regression, project, run_trends,
                            shift_month, standard_deviation)


def test_regression_two_points():
    slope, intercept = linear_regression([(0, 100), (1, 200)])
    assert slope == pytest.approx(100)
    assert intercept == pytest.approx(100)
    assert slope * 2 + intercept == pytest.approx(300)


@pytest.mark.parametrize('points', [[], [(0, 42)], [(1, 5), (1, 7)]])
def test_regression_degenerate(points):
    assert linear_regression(points) == (0.0, 0.0)


def test_standard_deviation():
    assert standard_deviation([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)
    assert standard_deviation([]) == 0.0
    assert standard_deviation([5]) == 0.0


def test_confidence_range_widens():
    assert confidence_range(1000, 1) == pytest.approx(1150)
    assert confidence_range(1000, 4) == pytest.approx(1600)
    assert confidence_range(0, 6) == 0


def test_shift_month():
    assert shift_month('2025-11', 1) == '2025-12'
    assert shift_month('2025-11', 2) == '2026-01'
    assert shift_month('2024-01', 24) == '2026-01'


def _hist(costs, compliance=None, incidents=None, start='2025-01'):
    compliance = compliance or [90.0] * len(costs)
    incidents = incidents or [2] * len(costs)
    return [{'month': shift_month(start, i), 'totalCost': c, 'complianceRate': compliance[i],
             'incidentCount': incidents[i]} for i, c in enumerate(costs)]


def test_project_continues_line():
    projected = project(_hist([100, 200, 300]), 2)
    assert [p['month'] for p in projected] == ['2025-04', '2025-05']
    assert projected[0]['totalCost'] == pytest.approx(400)
    assert projected[1]['totalCost'] == pytest.approx(500)
    std = math.sqrt(20000 / 3)
    assert projected[0]['confidenceMax'] - projected[0]['totalCost'] == pytest.approx(std * 1.15)
    assert projected[1]['confidenceMax'] - projected[1]['totalCost'] == pytest.approx(std * 1.30)
    assert all(p['isProjection'] for p in projected)


def test_project_clamps_cost_and_band():
    projected = project(_hist([300, 200, 100]), 3)
    assert all(p['totalCost'] >= 0 for p in projected)
    assert all(p['confidenceMin'] >= 0 for p in projected)
    assert projected[-1]['totalCost'] == 0


def test_project_clamps_compliance_and_incidents():
    projected = project(_hist([1, 1, 1], compliance=[98, 99, 100], incidents=[2, 1, 0]), 3)
    assert all(0 <= p['complianceRate'] <= 100 for p in projected)
    assert projected[-1]['complianceRate'] == 100
    assert all(p['incidentCount'] >= 0 and isinstance(p['incidentCount'], int) for p in projected)


def test_project_single_point_is_flat():
    projected = project(_hist([500]), 2)
    # single point: slope and intercept fall back to zero
    assert [p['totalCost'] for p in projected] == [0, 0]
    assert projected[0]['month'] == '2025-02'


def test_project_without_history():
    projected = project([], 3)
    assert len(projected) == 3
    assert all(p['totalCost'] == 0 and p['confidenceMax'] == 0 for p in projected)


def test_classify_cost():
    assert classify([100, 100, 100, 120, 120, 120], 'cost') == 'increasing'
    assert classify([100, 100, 100, 80, 80, 80], 'cost') == 'decreasing'
    assert classify([100, 100, 100, 104, 104, 104], 'cost') == 'stable'
    assert classify([100, 200, 300], 'cost') == 'stable'
    assert classify([], 'cost') == 'stable'


def test_classify_compliance():
    assert classify([80, 80, 80, 85, 85, 85], 'compliance') == 'improving'
    assert classify([90, 90, 90, 85, 85, 85], 'compliance') == 'declining'
    assert classify([90, 90, 90, 91, 91, 91], 'compliance') == 'stable'


def test_classify_short_older_window():
    # four points: older window is the first point only
    assert classify([100, 150, 150, 150], 'cost') == 'increasing'


def _month_row(month, wo, compliant, incidents):
    return {'month': month, 'work_order_count': wo, 'compliant_count': compliant,
            'incident_count': incidents, 'avg_quality_score': 10.0}


def test_run_trends_payload():
    rows = [_month_row(f'2025-0{m}', 40, 36, m % 3) for m in range(1, 8)]
    out = run_trends(rows, 4)
    assert len(out['historical']) == 7
    assert len(out['projected']) == 4
    assert out['projected'][0]['month'] == '2025-08'
    assert not any(h['isProjection'] for h in out['historical'])
    assert out['historical'][0]['totalCost'] == 102500
    a = out['analysis']
    assert a['totalHistoricalCost'] == sum(h['totalCost'] for h in out['historical'])
    assert a['avgMonthlyCost'] == round(a['totalHistoricalCost'] / 7)
    assert a['complianceTrend'] == 'stable'
    assert a['projectedSavingsAtTarget'] >= 0


def test_run_trends_empty():
    out = run_trends([], 6)
    assert out['historical'] == []
    assert len(out['projected']) == 6
    assert out['analysis']['avgMonthlyCost'] == 0
    assert out['analysis']['costTrend'] == 'stable'


def test_projected_incidents_round_half_up():
    # incidents 1, 1, 2, 2 fit 0.4x + 0.9, which reaches 2.5 at x = 4
    projected = project(_hist([1, 1, 1, 1], incidents=[1, 1, 2, 2]), 1)
    assert projected[0]['incidentCount'] == 3


def test_cost_slope_keeps_cents():
    rows = [dict(_month_row(f'2025-0{m}', 1, 1, 0), downtime_hours=h)
            for m, h in [(1, 0.0), (2, 0.0001), (3, 0.0003)]]
    # monthly cost 0, 0.12, 0.36
    assert run_trends(rows, 1)['analysis']['costSlope'] == pytest.approx(0.18)
