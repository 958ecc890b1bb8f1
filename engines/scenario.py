"""
OptiSys Profit Navigator: Scenario / ROI Engine
What-if modelling of a compliance-improvement programme: annual savings,
ROI, payback, projected annual cost and NPV, plus saved-scenario comparison.
"""
import math
import uuid
from dataclasses import dataclass, replace

from engines.cost_model import (DEFAULT_CONSTANTS, clamp, coerce_number, cost_breakdown, potential_savings,
                                round_half_up)

PAYBACK_NOT_APPLICABLE = 'N/A'


@dataclass(frozen=True)
class Scenario:
    name: str = 'New Scenario'
    target_compliance: float = DEFAULT_CONSTANTS.target_compliance
    work_order_volume: float = 0          # 0 keeps the baseline volume
    labor_cost_per_hour: float = DEFAULT_CONSTANTS.hourly_rate
    implementation_cost: float = 50000.0
    implementation_months: int = 6

    @classmethod
    def from_dict(cls, body, constants=DEFAULT_CONSTANTS):
        body = body or {}
        name = str(body.get('name') or '').strip() or cls.name
        return cls(
            name=name,
            target_compliance=clamp(coerce_number(body.get('targetCompliance'), constants.target_compliance), 0.0, 100.0),
            work_order_volume=max(0.0, coerce_number(body.get('workOrderVolume'))),
            labor_cost_per_hour=max(0.0, coerce_number(body.get('laborCostPerHour'), constants.hourly_rate)),
            implementation_cost=max(0.0, coerce_number(body.get('implementationCost'), cls.implementation_cost)),
            implementation_months=int(max(0.0, coerce_number(body.get('implementationMonths'), cls.implementation_months))),
        )

    def as_dict(self):
        return {
            'name': self.name, 'targetCompliance': self.target_compliance,
            'workOrderVolume': self.work_order_volume, 'laborCostPerHour': self.labor_cost_per_hour,
            'implementationCost': self.implementation_cost, 'implementationMonths': self.implementation_months,
        }


def npv(annual_savings, implementation_cost, constants=DEFAULT_CONSTANTS):
    rate, years = constants.discount_rate, int(constants.npv_years)
    return -implementation_cost + sum(annual_savings / (1 + rate) ** yr for yr in range(1, years + 1))


def payback_months(implementation_cost, annual_savings):
    monthly = annual_savings / 12
    if monthly <= 0:
        return PAYBACK_NOT_APPLICABLE
    return math.ceil(implementation_cost / monthly)


def evaluate_scenario(scenario, current_total_cost, current_compliance_rate, constants=DEFAULT_CONSTANTS):
    """Unrounded scenario figures."""
    current_total_cost = coerce_number(current_total_cost)
    current_compliance_rate = coerce_number(current_compliance_rate)
    improvement = max(0.0, scenario.target_compliance - current_compliance_rate)
    savings = potential_savings(current_total_cost, current_compliance_rate, scenario.target_compliance, constants)
    impl = scenario.implementation_cost
    return {
        'complianceImprovement': improvement,
        'potentialAnnualSavings': savings,
        'roi': (savings - impl) / impl * 100 if impl > 0 else 0.0,
        'paybackMonths': payback_months(impl, savings),
        'projectedAnnualCost': current_total_cost - savings,
        'npv': npv(savings, impl, constants),
    }


def rebase_total_cost(aggregate, scenario, constants=DEFAULT_CONSTANTS):
    """Baseline cost re-priced at the scenario's labor rate and work-order volume."""
    scoped = replace(constants, hourly_rate=scenario.labor_cost_per_hour)
    return cost_breakdown(aggregate.scaled(scenario.work_order_volume), scoped).total


def run_scenario(scenario, current_total_cost, current_compliance_rate, constants=DEFAULT_CONSTANTS):
    current_total_cost = coerce_number(current_total_cost)
    current_compliance_rate = coerce_number(current_compliance_rate)
    r = evaluate_scenario(scenario, current_total_cost, current_compliance_rate, constants)
    payback = r['paybackMonths']
    return {
        'scenario': scenario.as_dict(),
        'results': {
            'currentComplianceRate': round_half_up(current_compliance_rate, 1),
            'currentTotalCost': round_half_up(current_total_cost),
            'complianceImprovement': round_half_up(r['complianceImprovement'], 1),
            'potentialAnnualSavings': round_half_up(r['potentialAnnualSavings']),
            'roi': round_half_up(r['roi'], 1),
            'paybackMonths': payback,
            'projectedAnnualCost': round_half_up(r['projectedAnnualCost']),
            'npv': round_half_up(r['npv']),
            'implementationMonths': scenario.implementation_months,
        },
    }


def new_saved_scenario(scenario):
    return {'id': uuid.uuid4().hex[:8], 'scenario': scenario}


def compare_scenarios(saved, aggregate, constants=DEFAULT_CONSTANTS):
    """Evaluate each saved scenario against the same baseline aggregate; flag the best NPV."""
    baseline = cost_breakdown(aggregate, constants).total
    results = []
    for entry in saved:
        sc = entry['scenario']
        current = rebase_total_cost(aggregate, sc, constants)
        out = run_scenario(sc, current, aggregate.compliance_rate, constants)
        out['id'] = entry['id']
        out['_npv'] = evaluate_scenario(sc, current, aggregate.compliance_rate, constants)['npv']
        results.append(out)

    best = max(results, key=lambda r: r['_npv']) if results else None
    for r in results:
        r['isBest'] = r is best
        del r['_npv']
    return {
        'scenarios': results,
        'bestScenario': best['scenario']['name'] if best else None,
        'baseline': {'totalCost': round_half_up(baseline), 'complianceRate': round_half_up(aggregate.compliance_rate, 1),
                     'workOrderCount': aggregate.work_order_count},
    }
