from engines.workers import run_worker_performance


def _worker(wid, name, level, wo, compliant, incidents=0):
    return {'worker_id': wid, 'name': name, 'experience_level': level, 'facility_id': 'F01',
            'facility_name': 'Baytown Refinery', 'work_order_count': wo, 'compliant_count': compliant,
            'incident_count': incidents, 'avg_quality_score': 10.0, 'avg_duration': 2.46}


def test_workers_ranked_by_compliance():
    out = run_worker_performance([
        _worker('W1', 'Marcus Reed', 'Junior', 10, 7, incidents=1),
        _worker('W2', 'Dana Ortiz', 'Senior', 10, 10),
        _worker('W3', 'Idle Hand', 'Mid', 0, 0),
    ])
    assert [w['name'] for w in out['workers']] == ['Dana Ortiz', 'Marcus Reed']

    marcus = out['workers'][1]
    assert marcus['complianceRate'] == 70.0
    assert marcus['avgDurationHours'] == 2.5
    assert marcus['facility'] == 'Baytown Refinery'
    # one incident: equipment damage plus direct cost times the OSHA multiplier
    assert marcus['profitImpact'] == 2500 + 25000 * 4
    assert marcus['costPerWorkOrder'] == 10250
    assert out['workers'][0]['profitImpact'] == 0

    s = out['summary']
    assert s['totalWorkers'] == 2
    assert s['avgComplianceRate'] == 85.0
    assert s['topPerformer'] == 'Dana Ortiz'
    assert s['needsSupport'] == 'Marcus Reed'
    assert [lvl['experienceLevel'] for lvl in out['experienceLevels']] == ['Senior', 'Junior']


def test_workers_empty():
    out = run_worker_performance([])
    assert out['workers'] == []
    assert out['experienceLevels'] == []
    assert out['summary']['topPerformer'] == 'N/A'
    assert out['summary']['avgComplianceRate'] == 0
