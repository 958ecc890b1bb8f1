"""
OptiSys Profit Navigator: Cost Model Engine
Converts work-order aggregates into dollar cost per category (labor, material,
safety, downtime, quality), compliance-driven potential savings, and the
facility / procedure profit rollups.

Pure functions only. Callers pass a CostConstants record; nothing here reads
or mutates module state beyond the frozen defaults.
"""
import math
from dataclasses import dataclass, fields, replace
from decimal import ROUND_HALF_UP, Decimal

QUALITY_SCALE_MAX = 10.0
COST_CATEGORIES = ('labor', 'material', 'safety', 'downtime', 'quality')


@dataclass(frozen=True)
class CostConstants:
    """Per-unit cost assumptions. Vary per call with ``with_overrides``."""

    hourly_rate: float = 85.0                 # fully-loaded labor $/h
    avg_rework_hours: float = 4.0
    incident_direct_cost: float = 25000.0
    osha_multiplier: float = 4.0              # total incident cost = direct x multiplier
    production_loss_per_hour: float = 1200.0
    equipment_damage_avg: float = 2500.0
    material_waste_avg: float = 500.0
    quality_customer_impact: float = 150.0    # $ per quality point lost per work order
    savings_realization_factor: float = 0.7   # share of modelled savings actually captured
    target_compliance: float = 95.0
    discount_rate: float = 0.10
    npv_years: int = 3
    default_quality_score: float = 7.0
    expected_duration_hours: float = 2.5
    cost_per_noncompliant: float = 17965.0
    cost_per_compliant: float = 243.0

    def with_overrides(self, **overrides):
        known = {f.name for f in fields(self)}
        return replace(self, **{k: v for k, v in overrides.items() if k in known and v is not None})

    def as_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}


DEFAULT_CONSTANTS = CostConstants()


def clamp(v, lo, hi):
    return max(lo, min(hi, v))


def round_half_up(value, ndigits=0):
    """round() with ties going up (2.5 -> 3, 0.25 -> 0.3). Whole numbers come back as int."""
    q = Decimal(str(value)).quantize(Decimal(1).scaleb(-ndigits), rounding=ROUND_HALF_UP)
    return int(q) if ndigits == 0 else float(q)


def coerce_number(value, default=0.0):
    """Textual decimals -> float. None, blanks, junk and NaN/inf -> default."""
    if value is None:
        return default
    if isinstance(value, str):
        value = value.strip().replace(',', '')
        if not value:
            return default
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    return num if math.isfinite(num) else default


# ── Row field aliases: SQL column names first, then dashboard (camelCase) names ──
FIELD_ALIASES = {
    'work_order_count': ('work_order_count', 'total_work_orders', 'workOrderCount', 'totalWorkOrders'),
    'compliant_count': ('compliant_count', 'compliantCount'),
    'incident_count': ('incident_count', 'incidentCount', 'total_incidents'),
    'rework_count': ('rework_count', 'reworkCount'),
    'downtime_hours': ('downtime_hours', 'total_downtime_hours', 'downtimeHours'),
    'avg_quality_score': ('avg_quality_score', 'avgQualityScore'),
    'total_duration_hours': ('total_duration_hours', 'totalDurationHours'),
    'duration_variance_hours': ('duration_variance_hours', 'total_duration_variance_hours', 'durationVarianceHours'),
    'compliance_rate': ('compliance_rate', 'complianceRate'),
}


def pick(row, field):
    for key in FIELD_ALIASES.get(field, (field,)):
        if key in row and row[key] is not None:
            return row[key]
    return None


@dataclass(frozen=True)
class PeriodAggregate:
    work_order_count: float = 0
    compliant_count: float = 0
    incident_count: float = 0
    rework_count: float = 0
    downtime_hours: float = 0.0
    avg_quality_score: float = DEFAULT_CONSTANTS.default_quality_score
    total_duration_hours: float = 0.0
    duration_variance_hours: float = 0.0
    compliance_rate: float = 0.0

    def __post_init__(self):
        # None, text and NaN/inf fall back to the field default
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (int, float)) and math.isfinite(value):
                continue
            object.__setattr__(self, f.name, coerce_number(value, f.default))

    @classmethod
    def from_row(cls, row, constants=DEFAULT_CONSTANTS):
        """Build from an aggregation row, treating missing or malformed fields as zero."""
        row = row or {}
        wo = round_half_up(max(0.0, coerce_number(pick(row, 'work_order_count'))))
        compliant = round_half_up(clamp(coerce_number(pick(row, 'compliant_count')), 0, wo))
        quality = coerce_number(pick(row, 'avg_quality_score'), None)
        if quality is None:
            quality = constants.default_quality_score
        rate = coerce_number(pick(row, 'compliance_rate'), None)
        if rate is None:
            rate = compliant / wo * 100 if wo else 0.0
        return cls(
            work_order_count=wo,
            compliant_count=compliant,
            incident_count=round_half_up(max(0.0, coerce_number(pick(row, 'incident_count')))),
            rework_count=round_half_up(max(0.0, coerce_number(pick(row, 'rework_count')))),
            downtime_hours=max(0.0, coerce_number(pick(row, 'downtime_hours'))),
            avg_quality_score=clamp(quality, 0.0, QUALITY_SCALE_MAX),
            total_duration_hours=max(0.0, coerce_number(pick(row, 'total_duration_hours'))),
            duration_variance_hours=coerce_number(pick(row, 'duration_variance_hours')),
            compliance_rate=clamp(rate, 0.0, 100.0),
        )

    def scaled(self, work_order_volume):
        """Same period re-expressed at a different work-order volume (rates held constant)."""
        if self.work_order_count <= 0 or work_order_volume <= 0:
            return self
        f = work_order_volume / self.work_order_count
        return replace(
            self,
            work_order_count=work_order_volume,
            compliant_count=self.compliant_count * f,
            incident_count=self.incident_count * f,
            rework_count=self.rework_count * f,
            downtime_hours=self.downtime_hours * f,
            total_duration_hours=self.total_duration_hours * f,
            duration_variance_hours=self.duration_variance_hours * f,
        )


@dataclass(frozen=True)
class CostBreakdown:
    labor: float = 0.0
    material: float = 0.0
    safety: float = 0.0
    downtime: float = 0.0
    quality: float = 0.0

    @property
    def total(self):
        return self.labor + self.material + self.safety + self.downtime + self.quality

    def categories(self):
        return {c: getattr(self, c) for c in COST_CATEGORIES}

    def shares(self):
        """Percent of total per category; all zero when there is no cost."""
        total = self.total
        if total <= 0:
            return {c: 0.0 for c in COST_CATEGORIES}
        return {c: v / total * 100 for c, v in self.categories().items()}


# ── Category formulas ──

def rework_labor_cost(rework_count, constants=DEFAULT_CONSTANTS):
    return rework_count * constants.avg_rework_hours * constants.hourly_rate


def variance_labor_cost(duration_variance_hours, constants=DEFAULT_CONSTANTS):
    return max(0.0, duration_variance_hours) * constants.hourly_rate


def labor_cost(rework_count, duration_variance_hours, constants=DEFAULT_CONSTANTS):
    return rework_labor_cost(rework_count, constants) + variance_labor_cost(duration_variance_hours, constants)


def material_cost(incident_count, rework_count, constants=DEFAULT_CONSTANTS):
    return incident_count * constants.equipment_damage_avg + rework_count * constants.material_waste_avg


def safety_cost(incident_count, constants=DEFAULT_CONSTANTS):
    return incident_count * constants.incident_direct_cost * constants.osha_multiplier


def downtime_cost(downtime_hours, constants=DEFAULT_CONSTANTS):
    return downtime_hours * constants.production_loss_per_hour


def quality_loss(avg_quality_score):
    return max(0.0, QUALITY_SCALE_MAX - avg_quality_score)


def quality_cost(avg_quality_score, work_order_count, constants=DEFAULT_CONSTANTS):
    return quality_loss(avg_quality_score) * work_order_count * constants.quality_customer_impact


def cost_breakdown(aggregate, constants=DEFAULT_CONSTANTS):
    a = aggregate
    if a.work_order_count <= 0:
        return CostBreakdown()
    return CostBreakdown(
        labor=labor_cost(a.rework_count, a.duration_variance_hours, constants),
        material=material_cost(a.incident_count, a.rework_count, constants),
        safety=safety_cost(a.incident_count, constants),
        downtime=downtime_cost(a.downtime_hours, constants),
        quality=quality_cost(a.avg_quality_score, a.work_order_count, constants),
    )


def potential_savings(total_cost, current_compliance, target_compliance=None, constants=DEFAULT_CONSTANTS):
    target = coerce_number(target_compliance, constants.target_compliance)
    improvement = max(0.0, (target - coerce_number(current_compliance)) / 100)
    return max(0.0, coerce_number(total_cost)) * improvement * constants.savings_realization_factor


def month_over_month(recent, constants=DEFAULT_CONSTANTS):
    """% change in modelled cost between the two most recent months (newest first)."""
    if len(recent) < 2:
        return 0.0
    current = cost_breakdown(recent[0], constants).total
    previous = cost_breakdown(recent[1], constants).total
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def run_breakdown(aggregate, constants=DEFAULT_CONSTANTS, target_compliance=None, recent=None):
    a = aggregate; c = constants
    target = c.target_compliance if target_compliance is None else target_compliance
    costs = cost_breakdown(a, c)
    shares = costs.shares()
    has_orders = a.work_order_count > 0
    details = {
        'labor': {
            'reworkCount': a.rework_count,
            'reworkCost': round_half_up(rework_labor_cost(a.rework_count, c) if has_orders else 0),
            'varianceCost': round_half_up(variance_labor_cost(a.duration_variance_hours, c) if has_orders else 0),
        },
        'material': {
            'equipmentDamageCost': round_half_up(a.incident_count * c.equipment_damage_avg if has_orders else 0),
            'materialWasteCost': round_half_up(a.rework_count * c.material_waste_avg if has_orders else 0),
        },
        'safety': {
            'incidentCount': a.incident_count,
            'directCostPerIncident': c.incident_direct_cost,
            'oshaMultiplier': c.osha_multiplier,
        },
        'downtime': {'totalHours': round_half_up(a.downtime_hours, 1), 'costPerHour': c.production_loss_per_hour},
        'quality': {
            'avgQualityScore': round_half_up(a.avg_quality_score, 1),
            'qualityLoss': round_half_up(quality_loss(a.avg_quality_score), 1),
            'workOrderCount': a.work_order_count,
        },
    }
    return {
        'totalProfitImpact': round_half_up(costs.total),
        'potentialSavings': round_half_up(potential_savings(costs.total, a.compliance_rate, target, c)),
        'monthOverMonthTrend': round_half_up(month_over_month(recent or [], c), 1),
        'categories': {
            cat: {'total': round_half_up(val), 'percentOfTotal': round_half_up(shares[cat], 1), 'details': details[cat]}
            for cat, val in costs.categories().items()
        },
        'complianceRate': round_half_up(a.compliance_rate, 1),
        'workOrderCount': a.work_order_count,
        'targetCompliance': target,
    }


def compliance_cost_gap(aggregate, constants=DEFAULT_CONSTANTS):
    """Benchmark cost of the period's non-compliant vs compliant work orders."""
    a = aggregate; c = constants
    noncompliant = max(0, a.work_order_count - a.compliant_count)
    return {
        'compliantCount': a.compliant_count, 'nonCompliantCount': noncompliant,
        'compliantCost': round_half_up(a.compliant_count * c.cost_per_compliant),
        'nonCompliantCost': round_half_up(noncompliant * c.cost_per_noncompliant),
        'costPerCompliant': c.cost_per_compliant, 'costPerNonCompliant': c.cost_per_noncompliant,
        'costRatio': round_half_up(c.cost_per_noncompliant / c.cost_per_compliant, 1) if c.cost_per_compliant > 0 else 0,
    }


def run_summary(row, constants=DEFAULT_CONSTANTS):
    """Headline numbers: compliance, incident rates split by compliance, benchmark cost gap."""
    row = row or {}
    a = PeriodAggregate.from_row(row, constants)
    compliant_inc = max(0.0, coerce_number(row.get('compliant_incidents')))
    noncompliant_inc = max(0.0, coerce_number(row.get('noncompliant_incidents')))
    noncompliant = a.work_order_count - a.compliant_count
    compliant_rate = compliant_inc / a.compliant_count * 100 if a.compliant_count > 0 else 0.0
    noncompliant_rate = noncompliant_inc / noncompliant * 100 if noncompliant > 0 else 0.0
    # Non-compliant incident rate as a multiple of the compliant one
    reduction = noncompliant_rate / compliant_rate if compliant_rate > 0 else 0.0
    return {
        'totalWorkOrders': a.work_order_count,
        'overallCompliance': round_half_up(a.compliance_rate, 1),
        'incidentCount': a.incident_count,
        'compliantIncidentRate': round_half_up(compliant_rate, 1),
        'nonCompliantIncidentRate': round_half_up(noncompliant_rate, 1),
        'incidentReduction': round_half_up(reduction, 1),
        'complianceCostGap': compliance_cost_gap(a, constants),
    }


# ── Rollups ──

def _profit_row(row, constants, target):
    a = PeriodAggregate.from_row(row, constants)
    costs = cost_breakdown(a, constants)
    return a, costs, potential_savings(costs.total, a.compliance_rate, target, constants)


def run_facility_profit(rows, constants=DEFAULT_CONSTANTS, target_compliance=None):
    target = constants.target_compliance if target_compliance is None else target_compliance
    facilities = []
    for row in rows:
        a, costs, savings = _profit_row(row, constants, target)
        facilities.append({
            'facilityId': row.get('facility_id'), 'name': row.get('name'),
            'performanceTier': row.get('performance_tier'),
            'complianceRate': round_half_up(a.compliance_rate, 1), 'workOrderCount': a.work_order_count,
            'incidentCount': a.incident_count, 'reworkCount': a.rework_count,
            'downtimeHours': round_half_up(a.downtime_hours, 1), 'avgQualityScore': round_half_up(a.avg_quality_score, 1),
            'profitImpact': round_half_up(costs.total), 'potentialSavings': round_half_up(savings),
            'costBreakdown': {k: round_half_up(v) for k, v in costs.categories().items()},
            '_total': costs.total,
        })

    facilities.sort(key=lambda f: f['_total'], reverse=True)
    for rank, f in enumerate(facilities, 1):
        f['rank'] = rank
        del f['_total']

    n = len(facilities)
    summary = {
        'totalFacilities': n,
        'totalProfitImpact': sum(f['profitImpact'] for f in facilities),
        'totalPotentialSavings': sum(f['potentialSavings'] for f in facilities),
        'avgComplianceRate': round_half_up(sum(f['complianceRate'] for f in facilities) / n, 1) if n else 0,
        'topCostFacility': facilities[0]['name'] if facilities else 'N/A',
        'lowestCostFacility': facilities[-1]['name'] if facilities else 'N/A',
    }
    return {'facilities': facilities, 'summary': summary}


def run_procedure_profit(rows, constants=DEFAULT_CONSTANTS):
    procedures = []
    grand_total = 0.0
    for row in rows:
        a, costs, _ = _profit_row(row, constants, None)
        grand_total += costs.total
        procedures.append({
            'procedureId': row.get('procedure_id'), 'name': row.get('name'),
            'category': row.get('category') or 'Uncategorized',
            'complianceRate': round_half_up(a.compliance_rate, 1), 'workOrderCount': a.work_order_count,
            'incidentCount': a.incident_count, 'reworkCount': a.rework_count,
            'downtimeHours': round_half_up(a.downtime_hours, 1), 'avgQualityScore': round_half_up(a.avg_quality_score, 1),
            'laborCost': round_half_up(costs.labor), 'materialCost': round_half_up(costs.material),
            'incidentCost': round_half_up(costs.safety), 'downtimeCost': round_half_up(costs.downtime),
            'qualityCost': round_half_up(costs.quality), 'totalProfitImpact': round_half_up(costs.total),
            '_total': costs.total,
        })

    for p in procedures:
        p['contributionPercent'] = round_half_up(p['_total'] / grand_total * 100, 1) if grand_total > 0 else 0
    procedures.sort(key=lambda p: p['_total'], reverse=True)

    cats = {}
    for p in procedures:
        cat = cats.setdefault(p['category'], {'category': p['category'], 'totalCost': 0.0,
                                              'procedureCount': 0, 'avgCompliance': 0.0})
        cat['totalCost'] += p.pop('_total')
        cat['procedureCount'] += 1
        cat['avgCompliance'] += p['complianceRate']
    categories = []
    for cat in cats.values():
        cat['avgCompliance'] = round_half_up(cat['avgCompliance'] / max(cat['procedureCount'], 1), 1)
        categories.append(cat)
    categories.sort(key=lambda x: x['totalCost'], reverse=True)
    for cat in categories:
        cat['totalCost'] = round_half_up(cat['totalCost'])

    n = len(procedures)
    summary = {
        'totalProcedures': n,
        'totalProfitImpact': round_half_up(grand_total),
        'topCostProcedure': procedures[0]['name'] if procedures else 'N/A',
        'topCategory': categories[0]['category'] if categories else 'N/A',
        'avgComplianceRate': round_half_up(sum(p['complianceRate'] for p in procedures) / n, 1) if n else 0,
    }
    return {'procedures': procedures, 'categories': categories, 'summary': summary}
