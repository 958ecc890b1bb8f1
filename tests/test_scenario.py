import math

import pytest

from engines.cost_model import DEFAULT_CONSTANTS, PeriodAggregate, cost_breakdown
from engines.scenario import (PAYBACK_NOT_APPLICABLE, Scenario, compare_scenarios, evaluate_scenario,
                              new_saved_scenario, rebase_total_cost, run_scenario)

DISCOUNT = 1 / 1.1 + 1 / 1.1 ** 2 + 1 / 1.1 ** 3


def test_reference_scenario():
    sc = Scenario(target_compliance=95, implementation_cost=50_000)
    r = evaluate_scenario(sc, 1_000_000, 88.6)
    assert r['complianceImprovement'] == pytest.approx(6.4)
    assert r['potentialAnnualSavings'] == pytest.approx(44_800)
    assert r['roi'] == pytest.approx(-10.4)
    assert r['paybackMonths'] == math.ceil(50_000 / (44_800 / 12))
    assert r['projectedAnnualCost'] == pytest.approx(955_200)
    assert r['npv'] == pytest.approx(-50_000 + 44_800 * DISCOUNT)


def test_free_implementation_has_zero_roi():
    r = evaluate_scenario(Scenario(target_compliance=95, implementation_cost=0), 1_000_000, 85)
    assert r['roi'] == 0
    assert r['paybackMonths'] == 0


def test_target_already_met():
    r = evaluate_scenario(Scenario(target_compliance=90, implementation_cost=25_000), 500_000, 92)
    assert r['complianceImprovement'] == 0
    assert r['potentialAnnualSavings'] == 0
    assert r['paybackMonths'] == PAYBACK_NOT_APPLICABLE
    assert r['npv'] == pytest.approx(-25_000)
    assert r['projectedAnnualCost'] == 500_000


def test_payback_never_infinite():
    out = run_scenario(Scenario(implementation_cost=10_000), 0, 50)
    payback = out['results']['paybackMonths']
    assert payback == 'N/A'


def test_run_scenario_rounds_and_echoes():
    sc = Scenario(name='Pilot', target_compliance=95, implementation_cost=50_000, implementation_months=9)
    out = run_scenario(sc, 1_000_000, 88.6)
    assert out['scenario']['name'] == 'Pilot'
    assert out['results']['potentialAnnualSavings'] == 44_800
    assert out['results']['roi'] == -10.4
    assert out['results']['implementationMonths'] == 9


def test_from_dict_coerces_and_clamps():
    sc = Scenario.from_dict({'name': ' ', 'targetCompliance': '120', 'workOrderVolume': '-5',
                             'laborCostPerHour': 'abc', 'implementationCost': '75000',
                             'implementationMonths': '4'})
    assert sc.name == 'New Scenario'
    assert sc.target_compliance == 100
    assert sc.work_order_volume == 0
    assert sc.labor_cost_per_hour == DEFAULT_CONSTANTS.hourly_rate
    assert sc.implementation_cost == 75_000
    assert sc.implementation_months == 4


def test_from_dict_defaults():
    sc = Scenario.from_dict(None)
    assert sc.target_compliance == 95
    assert sc.implementation_cost == 50_000


def _agg():
    return PeriodAggregate(work_order_count=100, compliant_count=80, incident_count=1, rework_count=10,
                           avg_quality_score=10.0, compliance_rate=80.0)


def test_rebase_labor_rate_is_scoped():
    base = cost_breakdown(_agg()).total
    dearer = rebase_total_cost(_agg(), Scenario(labor_cost_per_hour=100))
    assert dearer - base == pytest.approx(10 * 4 * 15)
    assert DEFAULT_CONSTANTS.hourly_rate == 85


def test_rebase_volume_scales_costs():
    base = cost_breakdown(_agg()).total
    assert rebase_total_cost(_agg(), Scenario(work_order_volume=200)) == pytest.approx(base * 2)
    assert rebase_total_cost(_agg(), Scenario(work_order_volume=0)) == pytest.approx(base)


def test_compare_marks_best_npv():
    saved = [
        new_saved_scenario(Scenario(name='Modest', target_compliance=85, implementation_cost=10_000)),
        new_saved_scenario(Scenario(name='Ambitious', target_compliance=99, implementation_cost=20_000)),
    ]
    out = compare_scenarios(saved, _agg())
    assert out['bestScenario'] == 'Ambitious'
    assert [s['isBest'] for s in out['scenarios']] == [False, True]
    assert all(s['id'] for s in out['scenarios'])
    assert out['baseline']['complianceRate'] == 80.0


def test_compare_empty():
    out = compare_scenarios([], _agg())
    assert out['scenarios'] == []
    assert out['bestScenario'] is None


def test_non_numeric_baseline_reads_as_zero():
    r = evaluate_scenario(Scenario(target_compliance=95, implementation_cost=10_000), float('nan'), 80)
    assert r['projectedAnnualCost'] == 0
    assert r['potentialAnnualSavings'] == 0
    assert r['paybackMonths'] == PAYBACK_NOT_APPLICABLE
    assert r['complianceImprovement'] == 15

    out = run_scenario(Scenario(), None, 'n/a')
    assert out['results']['currentTotalCost'] == 0
    assert out['results']['currentComplianceRate'] == 0
    assert out['results']['complianceImprovement'] == 95.0
    assert out['results']['npv'] == -50_000
