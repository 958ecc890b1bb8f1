"""
OptiSys Profit Navigator: Worker Performance
Per-worker compliance, incidents, quality and modelled cost, ranked by compliance,
with an experience-level rollup.
"""
from engines.cost_model import DEFAULT_CONSTANTS, PeriodAggregate, coerce_number, cost_breakdown, round_half_up


def run_worker_performance(rows, constants=DEFAULT_CONSTANTS):
    workers = []
    for row in rows:
        a = PeriodAggregate.from_row(row, constants)
        if a.work_order_count <= 0: continue
        costs = cost_breakdown(a, constants)
        workers.append({
            'workerId': row.get('worker_id'), 'name': row.get('name'),
            'experienceLevel': row.get('experience_level') or 'Unspecified',
            'facilityId': row.get('facility_id'), 'facility': row.get('facility_name'),
            'workOrderCount': a.work_order_count,
            'complianceRate': round_half_up(a.compliance_rate, 1),
            'incidentCount': a.incident_count, 'reworkCount': a.rework_count,
            'avgQualityScore': round_half_up(a.avg_quality_score, 1),
            'avgDurationHours': round_half_up(coerce_number(row.get('avg_duration')), 1),
            'profitImpact': round_half_up(costs.total),
            'costPerWorkOrder': round_half_up(costs.total / a.work_order_count),
        })

    workers.sort(key=lambda w: (-w['complianceRate'], -w['workOrderCount']))

    levels = {}
    for w in workers:
        lvl = levels.setdefault(w['experienceLevel'], {'experienceLevel': w['experienceLevel'], 'workerCount': 0,
                                                       'workOrderCount': 0, 'avgCompliance': 0.0, 'incidentCount': 0})
        lvl['workerCount'] += 1
        lvl['workOrderCount'] += w['workOrderCount']
        lvl['avgCompliance'] += w['complianceRate']
        lvl['incidentCount'] += w['incidentCount']
    experience = []
    for lvl in levels.values():
        lvl['avgCompliance'] = round_half_up(lvl['avgCompliance'] / lvl['workerCount'], 1)
        experience.append(lvl)
    experience.sort(key=lambda x: x['avgCompliance'], reverse=True)

    n = len(workers)
    summary = {
        'totalWorkers': n,
        'avgComplianceRate': round_half_up(sum(w['complianceRate'] for w in workers) / n, 1) if n else 0,
        'totalProfitImpact': sum(w['profitImpact'] for w in workers),
        'topPerformer': workers[0]['name'] if workers else 'N/A',
        'needsSupport': workers[-1]['name'] if workers else 'N/A',
    }
    return {'workers': workers, 'experienceLevels': experience, 'summary': summary}
