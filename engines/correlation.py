"""
OptiSys Profit Navigator: Compliance Correlation Engine
How compliance relates to outcomes: per-procedure incident-rate reduction and
cost impact (scatter), and the compliant vs non-compliant cohort comparison
(split screen).
"""
import math

from engines.cost_model import DEFAULT_CONSTANTS, coerce_number, round_half_up

MIN_CORRELATION_WORK_ORDERS = 5


def ratio(numerator, denominator, default=0.0):
    numerator, denominator = coerce_number(numerator), coerce_number(denominator)
    return numerator / denominator if denominator > 0 else default


def rate(part, whole):
    return ratio(part, whole) * 100


def incident_rate_reduction(compliant_rate, noncompliant_rate):
    """% fewer incidents per work order when compliant.
    With no non-compliant incidents: 100 if compliant work was incident-free too, else 0."""
    if noncompliant_rate > 0:
        return (noncompliant_rate - compliant_rate) / noncompliant_rate * 100
    return 100.0 if compliant_rate == 0 else 0.0


def pearson(xs, ys):
    """Correlation coefficient; 0 for fewer than two points or a flat series."""
    n = len(xs)
    if n < 2:
        return 0.0
    mx, my = sum(xs) / n, sum(ys) / n
    cov = sum((x - mx) * (y - my) for x, y in zip(xs, ys))
    vx = sum((x - mx) ** 2 for x in xs)
    vy = sum((y - my) ** 2 for y in ys)
    if vx <= 0 or vy <= 0:
        return 0.0
    return cov / math.sqrt(vx * vy)


def run_correlation(rows, constants=DEFAULT_CONSTANTS):
    """Scatter points: compliance rate vs incident-rate reduction, sized by cost impact."""
    c = constants
    gap = c.cost_per_noncompliant - c.cost_per_compliant
    points, compliance, incidents = [], [], []
    for row in rows:
        wo = max(0.0, coerce_number(row.get('work_order_count')))
        if wo <= 0: continue
        compliant = min(wo, max(0.0, coerce_number(row.get('compliant_count'))))
        noncompliant = wo - compliant
        c_rate = rate(row.get('compliant_incidents'), compliant)
        nc_rate = rate(row.get('noncompliant_incidents'), noncompliant)
        compliance_rate = compliant / wo * 100
        incident_rate = rate(row.get('incident_count'), wo)
        compliance.append(compliance_rate)
        incidents.append(incident_rate)
        points.append({
            'procedureId': row.get('procedure_id'), 'name': row.get('name'),
            'category': row.get('category') or 'Uncategorized',
            'workOrderCount': int(wo),
            'complianceRate': round_half_up(compliance_rate, 1),
            'incidentRate': round_half_up(incident_rate, 1),
            'compliantIncidentRate': round_half_up(c_rate, 1),
            'nonCompliantIncidentRate': round_half_up(nc_rate, 1),
            'incidentRateReduction': round_half_up(incident_rate_reduction(c_rate, nc_rate), 1),
            'costImpact': round_half_up(noncompliant * gap),
        })

    points.sort(key=lambda p: (-p['complianceRate'], p['name'] or ''))
    n = len(points)
    summary = {
        'totalProcedures': n,
        'totalCostImpact': sum(p['costImpact'] for p in points),
        'avgIncidentRateReduction': round_half_up(sum(p['incidentRateReduction'] for p in points) / n, 1) if n else 0,
        # negative when higher compliance goes with fewer incidents
        'complianceIncidentCorrelation': round_half_up(pearson(compliance, incidents), 2),
    }
    return {'procedures': points, 'summary': summary}


def _cohort(row, unit_cost):
    row = row or {}
    wo = max(0.0, coerce_number(row.get('work_order_count')))
    incidents = max(0.0, coerce_number(row.get('incident_count')))
    rework = max(0.0, coerce_number(row.get('rework_count')))
    incident_rate = rate(incidents, wo)
    rework_rate = rate(rework, wo)
    total_cost = wo * unit_cost
    return {
        'workOrders': int(wo), 'incidents': int(incidents), 'incidentRate': incident_rate,
        'oneIn': ratio(100, incident_rate),
        'avgQuality': coerce_number(row.get('avg_quality_score')),
        'reworkCount': int(rework), 'reworkRate': rework_rate,
        'avgDowntimeHours': max(0.0, coerce_number(row.get('avg_downtime_hours'))),
        'unitCost': unit_cost, 'totalCost': total_cost, 'reworkCost': total_cost * rework_rate / 100,
    }


def _present_cohort(cohort):
    return {
        'workOrders': cohort['workOrders'], 'incidents': cohort['incidents'],
        'incidentRate': round_half_up(cohort['incidentRate'], 1), 'oneIn': round_half_up(cohort['oneIn']),
        'avgQuality': round_half_up(cohort['avgQuality'], 1),
        'reworkCount': cohort['reworkCount'], 'reworkRate': round_half_up(cohort['reworkRate'], 1),
        'avgDowntimeHours': round_half_up(cohort['avgDowntimeHours'], 2),
        'unitCost': cohort['unitCost'], 'totalCost': round_half_up(cohort['totalCost']),
        'reworkCost': round_half_up(cohort['reworkCost']),
    }


def run_cohort_comparison(rows, constants=DEFAULT_CONSTANTS):
    """Compliant vs non-compliant work orders side by side.

    ``rows`` holds one aggregate row per ``compliant`` flag (1 or 0). Multipliers are
    non-compliant over compliant and read 0 when the compliant figure is 0.
    ``sufficientData`` is False unless both cohorts have work orders.
    """
    by_flag = {int(coerce_number(r.get('compliant'))): r for r in rows}
    ok = _cohort(by_flag.get(1), constants.cost_per_compliant)
    bad = _cohort(by_flag.get(0), constants.cost_per_noncompliant)
    total = ok['workOrders'] + bad['workOrders']
    multipliers = {
        'incident': ratio(bad['incidentRate'], ok['incidentRate']),
        'rework': ratio(bad['reworkRate'], ok['reworkRate']),
        'downtime': ratio(bad['avgDowntimeHours'], ok['avgDowntimeHours']),
        'qualityDifference': ratio(ok['avgQuality'] - bad['avgQuality'], bad['avgQuality']) * 100,
    }
    return {
        'sufficientData': ok['workOrders'] > 0 and bad['workOrders'] > 0,
        'totalWorkOrders': total,
        'compliantCount': ok['workOrders'],
        'nonCompliantCount': bad['workOrders'],
        'compliantPercent': round_half_up(rate(ok['workOrders'], total), 1),
        'nonCompliantPercent': round_half_up(rate(bad['workOrders'], total), 1),
        'compliant': _present_cohort(ok),
        'nonCompliant': _present_cohort(bad),
        'multipliers': {k: round_half_up(v, 1) for k, v in multipliers.items()},
        'savingsOpportunity': round_half_up(bad['totalCost'] - ok['totalCost']),
    }
