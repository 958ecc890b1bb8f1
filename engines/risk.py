"""
OptiSys Profit Navigator: Procedure Risk Engine
Per-procedure weighted risk scoring with category and recommended action.
"""
from engines.cost_model import (DEFAULT_CONSTANTS, QUALITY_SCALE_MAX, PeriodAggregate, coerce_number,
                                round_half_up)

RISK_WEIGHTS = {'compliance': 0.4, 'incidents': 0.3, 'quality': 0.2, 'rework': 0.1}
QUALITY_GAP_SCALE = 5   # 0-10 quality gap stretched onto a 0-50 scale

# Lower bound inclusive, checked top-down
RISK_CATEGORIES = [
    (70, 'Critical', 'Immediate action required'),
    (50, 'High', 'Enhanced monitoring needed'),
    (30, 'Medium', 'Standard monitoring'),
]
LOW_CATEGORY = ('Low', 'Good performance')


def risk_components(compliance_rate, incident_rate, avg_quality_score, rework_count, total_work_orders,
                    constants=DEFAULT_CONSTANTS):
    quality = coerce_number(avg_quality_score, None)
    if quality is None:
        quality = constants.default_quality_score
    total = coerce_number(total_work_orders)
    rework_pct = coerce_number(rework_count) / total * 100 if total > 0 else 0.0
    return {
        'compliance': (100 - coerce_number(compliance_rate)) * RISK_WEIGHTS['compliance'],
        'incidents': coerce_number(incident_rate) * RISK_WEIGHTS['incidents'],
        'quality': (QUALITY_SCALE_MAX - quality) * QUALITY_GAP_SCALE * RISK_WEIGHTS['quality'],
        'rework': rework_pct * RISK_WEIGHTS['rework'],
    }


def risk_score(compliance_rate, incident_rate, avg_quality_score, rework_count, total_work_orders,
               constants=DEFAULT_CONSTANTS):
    c = risk_components(compliance_rate, incident_rate, avg_quality_score, rework_count,
                        total_work_orders, constants)
    return c['compliance'] + c['incidents'] + c['quality'] + c['rework']


def risk_category(score):
    """Returns (category, recommendation) for a score."""
    for floor, category, recommendation in RISK_CATEGORIES:
        if score >= floor:
            return category, recommendation
    return LOW_CATEGORY


def run_risk(rows, constants=DEFAULT_CONSTANTS):
    profiles = []
    for row in rows:
        a = PeriodAggregate.from_row(row, constants)
        if a.work_order_count <= 0: continue
        incident_rate = a.incident_count / a.work_order_count * 100
        scores = risk_components(a.compliance_rate, incident_rate, a.avg_quality_score,
                                 a.rework_count, a.work_order_count, constants)
        score = round_half_up(scores['compliance'] + scores['incidents'] + scores['quality'] + scores['rework'], 1)
        category, recommendation = risk_category(score)
        profiles.append({
            'procedureId': row.get('procedure_id'), 'name': row.get('name'),
            'category': row.get('category') or 'Uncategorized',
            'totalWorkOrders': a.work_order_count,
            'complianceRate': round_half_up(a.compliance_rate, 1),
            'incidentRate': round_half_up(incident_rate, 1),
            'avgQualityScore': round_half_up(a.avg_quality_score, 1),
            'avgDuration': round_half_up(coerce_number(row.get('avg_duration')), 2),
            'reworkCount': a.rework_count,
            'equipmentTripCount': int(coerce_number(row.get('equipment_trip_count'))),
            'reworkRatio': round_half_up(a.rework_count / a.work_order_count, 3),
            'riskScore': score, 'riskCategory': category, 'recommendation': recommendation,
            'scores': {k: round_half_up(v, 2) for k, v in scores.items()},
        })

    profiles.sort(key=lambda p: (-p['riskScore'], -p['totalWorkOrders']))
    summary = {
        'critical': sum(1 for p in profiles if p['riskCategory'] == 'Critical'),
        'high': sum(1 for p in profiles if p['riskCategory'] == 'High'),
        'medium': sum(1 for p in profiles if p['riskCategory'] == 'Medium'),
        'low': sum(1 for p in profiles if p['riskCategory'] == 'Low'),
        'avgRisk': round_half_up(sum(p['riskScore'] for p in profiles) / max(len(profiles), 1), 1),
        'highestRisk': profiles[0]['name'] if profiles else 'N/A',
        'totalProcedures': len(profiles),
    }
    return {'procedures': profiles, 'summary': summary}
