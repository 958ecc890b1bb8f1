"""
OptiSys Profit Navigator: Trend Projection Engine
Monthly cost/compliance history, least-squares projection with a widening
confidence band, and trend classification.
"""
import math
from datetime import date

from engines.cost_model import (DEFAULT_CONSTANTS, PeriodAggregate, clamp, coerce_number,
                                cost_breakdown, potential_savings, round_half_up)

CONFIDENCE_WIDENING = 0.15   # band grows 15% of one std-dev per month projected
TREND_WINDOW = 3

# Ratio of recent-window mean to older-window mean before a direction is called
TREND_POLICY = {
    'cost': {'upper': 1.05, 'lower': 0.95, 'up': 'increasing', 'down': 'decreasing'},
    'compliance': {'upper': 1.02, 'lower': 0.98, 'up': 'improving', 'down': 'declining'},
}


def linear_regression(points):
    """Ordinary least squares over (x, y) pairs -> (slope, intercept).
    Empty input or a zero denominator gives (0.0, 0.0)."""
    pts = [(coerce_number(x), coerce_number(y)) for x, y in points]
    n = len(pts)
    if n == 0:
        return 0.0, 0.0
    sum_x = sum(x for x, _ in pts)
    sum_y = sum(y for _, y in pts)
    sum_xy = sum(x * y for x, y in pts)
    sum_x2 = sum(x * x for x, _ in pts)
    denom = n * sum_x2 - sum_x * sum_x
    if denom == 0:
        return 0.0, 0.0
    slope = (n * sum_xy - sum_x * sum_y) / denom
    intercept = (sum_y - slope * sum_x) / n
    if not (math.isfinite(slope) and math.isfinite(intercept)):
        return 0.0, 0.0
    return slope, intercept


def standard_deviation(values):
    """Population standard deviation; 0 for an empty series."""
    vals = [coerce_number(v) for v in values]
    if not vals:
        return 0.0
    mean = sum(vals) / len(vals)
    return math.sqrt(sum((v - mean) ** 2 for v in vals) / len(vals))


def confidence_range(std_dev, months_out):
    return std_dev * (1 + CONFIDENCE_WIDENING * months_out)


def shift_month(label, offset):
    """'2025-11' shifted by 3 -> '2026-02'. Unparsable labels start from the current month."""
    try:
        year, month = (int(p) for p in str(label).split('-')[:2])
        if not 1 <= month <= 12:
            raise ValueError(label)
    except (TypeError, ValueError):
        today = date.today()
        year, month = today.year, today.month
    idx = year * 12 + (month - 1) + offset
    return f"{idx // 12:04d}-{idx % 12 + 1:02d}"


def _mean(values):
    return sum(values) / len(values)


def classify(values, kind):
    """Compare the last TREND_WINDOW values against the TREND_WINDOW before them."""
    policy = TREND_POLICY[kind]
    recent = values[-TREND_WINDOW:]
    older = values[-2 * TREND_WINDOW:-TREND_WINDOW]
    if not recent or not older:
        return 'stable'
    recent_avg, older_avg = _mean(recent), _mean(older)
    if recent_avg > older_avg * policy['upper']:
        return policy['up']
    if recent_avg < older_avg * policy['lower']:
        return policy['down']
    return 'stable'


def build_history(monthly_rows, constants=DEFAULT_CONSTANTS):
    history = []
    for row in monthly_rows:
        a = PeriodAggregate.from_row(row, constants)
        history.append({
            'month': str(row.get('month', '')),
            'totalCost': cost_breakdown(a, constants).total,
            'complianceRate': a.compliance_rate,
            'incidentCount': a.incident_count,
            'workOrderCount': a.work_order_count,
            'isProjection': False,
        })
    return history


def project(history, months=6):
    """Extend the series ``months`` points past its end."""
    costs = [h['totalCost'] for h in history]
    cost_fit = linear_regression(enumerate(costs))
    compliance_fit = linear_regression(enumerate(h['complianceRate'] for h in history))
    incident_fit = linear_regression(enumerate(h['incidentCount'] for h in history))
    std_dev = standard_deviation(costs)
    last_month = history[-1]['month'] if history else None
    n = len(history)

    projected = []
    for i in range(1, max(0, int(months)) + 1):
        x = n + i - 1
        cost = max(0.0, cost_fit[0] * x + cost_fit[1])
        band = confidence_range(std_dev, i)
        if last_month:
            month = shift_month(last_month, i)
        else:
            month = shift_month(None, i - 1)
        projected.append({
            'month': month,
            'totalCost': cost,
            'complianceRate': clamp(compliance_fit[0] * x + compliance_fit[1], 0.0, 100.0),
            'incidentCount': max(0, round_half_up(incident_fit[0] * x + incident_fit[1])),
            'confidenceMin': max(0.0, cost - band),
            'confidenceMax': cost + band,
            'isProjection': True,
        })
    return projected


def _present(point):
    out = dict(point)
    for k in ('totalCost', 'confidenceMin', 'confidenceMax'):
        if k in out:
            out[k] = round_half_up(out[k])
    out['complianceRate'] = round_half_up(out['complianceRate'], 1)
    return out


def run_trends(monthly_rows, months=6, constants=DEFAULT_CONSTANTS):
    history = build_history(monthly_rows, constants)
    projected = project(history, months)
    costs = [h['totalCost'] for h in history]
    compliance = [h['complianceRate'] for h in history]

    total_hist = sum(costs)
    total_proj = sum(p['totalCost'] for p in projected)
    last_compliance = compliance[-1] if compliance else constants.target_compliance
    analysis = {
        'costTrend': classify(costs, 'cost'),
        'complianceTrend': classify(compliance, 'compliance'),
        'costSlope': round_half_up(linear_regression(enumerate(costs))[0], 2),
        'complianceSlope': round_half_up(linear_regression(enumerate(compliance))[0], 2),
        'totalHistoricalCost': round_half_up(total_hist),
        'totalProjectedCost': round_half_up(total_proj),
        'avgMonthlyCost': round_half_up(total_hist / len(costs)) if costs else 0,
        'projectedSavingsAtTarget': round_half_up(potential_savings(total_proj, last_compliance,
                                                            constants.target_compliance, constants)),
    }
    return {
        'historical': [_present(h) for h in history],
        'projected': [_present(p) for p in projected],
        'analysis': analysis,
    }
