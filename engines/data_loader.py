"""
OptiSys Profit Navigator: Data Loader & Aggregation Layer
SQLite queries that roll work orders up into period, monthly, procedure,
facility and worker aggregate rows, plus the optional cost-constants workbook
and a deterministic demo data set for local runs.
"""
import os, logging, random, sqlite3
from datetime import date
import openpyxl

from engines.cost_model import DEFAULT_CONSTANTS, clamp, coerce_number

DEFAULT_START_DATE = '2024-01-01'
DEFAULT_END_DATE = '2025-12-31'

SCHEMA = """
CREATE TABLE IF NOT EXISTS facilities (
    facility_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    performance_tier TEXT
);
CREATE TABLE IF NOT EXISTS procedures (
    procedure_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    category TEXT
);
CREATE TABLE IF NOT EXISTS workers (
    worker_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    experience_level TEXT,
    facility_id TEXT REFERENCES facilities(facility_id)
);
CREATE TABLE IF NOT EXISTS work_orders (
    wo_id TEXT PRIMARY KEY,
    procedure_id TEXT REFERENCES procedures(procedure_id),
    facility_id TEXT REFERENCES facilities(facility_id),
    scheduled_date TEXT NOT NULL,
    compliant INTEGER NOT NULL DEFAULT 0,
    safety_incident INTEGER NOT NULL DEFAULT 0,
    rework_required INTEGER NOT NULL DEFAULT 0,
    downtime_hours REAL DEFAULT 0,
    quality_score REAL,
    duration_hours REAL,
    equipment_trip INTEGER NOT NULL DEFAULT 0,
    worker_id TEXT REFERENCES workers(worker_id)
);
CREATE INDEX IF NOT EXISTS idx_wo_date ON work_orders(scheduled_date);
"""

# ── Cost constants workbook: 'Parameter' label -> CostConstants field ──
CONSTANT_LABELS = {
    'Hourly Rate': 'hourly_rate', 'Avg Rework Hours': 'avg_rework_hours',
    'Incident Direct Cost': 'incident_direct_cost', 'OSHA Multiplier': 'osha_multiplier',
    'Production Loss Per Hour': 'production_loss_per_hour', 'Equipment Damage Avg': 'equipment_damage_avg',
    'Material Waste Avg': 'material_waste_avg', 'Quality Customer Impact': 'quality_customer_impact',
    'Savings Realization Factor': 'savings_realization_factor', 'Target Compliance': 'target_compliance',
    'Discount Rate': 'discount_rate', 'NPV Years': 'npv_years',
    'Default Quality Score': 'default_quality_score', 'Expected Duration Hours': 'expected_duration_hours',
    'Cost Per Non-Compliant': 'cost_per_noncompliant', 'Cost Per Compliant': 'cost_per_compliant',
}


def read_xlsx_sheet(filepath, sheet_name=None):
    wb = openpyxl.load_workbook(filepath, read_only=True, data_only=True)
    ws = wb[sheet_name] if sheet_name else wb.active
    rows = list(ws.iter_rows(values_only=True))
    wb.close()
    if len(rows) < 2:
        return []
    headers = [str(h).strip() if h else f'col_{i}' for i, h in enumerate(rows[0])]
    return [dict(zip(headers, row)) for row in rows[1:]]


def load_cost_constants(path=None, base=DEFAULT_CONSTANTS):
    """Override cost constants from a two-column (Parameter, Value) workbook.
    A missing file leaves ``base`` untouched."""
    if not path or not os.path.exists(path):
        return base
    overrides = {}
    fields = set(base.as_dict())
    for row in read_xlsx_sheet(path):
        label = str(row.get('Parameter') or '').strip()
        key = CONSTANT_LABELS.get(label, label if label in fields else None)
        if not key:
            if label:
                logging.warning(f"[constants] unknown parameter '{label}' ignored")
            continue
        val = coerce_number(row.get('Value'), None)
        if val is None:
            logging.warning(f"[constants] non-numeric value for '{label}' ignored: {row.get('Value')!r}")
            continue
        overrides[key] = int(val) if key == 'npv_years' else val
    logging.info(f"[constants] {len(overrides)} override(s) loaded from {path}")
    return base.with_overrides(**overrides)


# ── Connection ──

def connect(db_path):
    if str(db_path) != ':memory:':
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_schema(conn):
    conn.executescript(SCHEMA)


def _rows(cursor):
    return [dict(r) for r in cursor.fetchall()]


def _params(start_date, end_date, constants):
    return {
        'start': start_date or DEFAULT_START_DATE,
        'end': end_date or DEFAULT_END_DATE,
        'expected': constants.expected_duration_hours,
    }


# Aggregate columns shared by every roll-up; the ``wo`` alias is the work_orders table
_AGG_COLUMNS = """
    COUNT(wo.wo_id) AS work_order_count,
    COALESCE(SUM(wo.compliant), 0) AS compliant_count,
    COALESCE(SUM(wo.safety_incident), 0) AS incident_count,
    COALESCE(SUM(wo.rework_required), 0) AS rework_count,
    COALESCE(SUM(wo.downtime_hours), 0) AS downtime_hours,
    AVG(wo.quality_score) AS avg_quality_score,
    COALESCE(SUM(wo.duration_hours), 0) AS total_duration_hours,
    COALESCE(SUM(wo.duration_hours - :expected), 0) AS duration_variance_hours,
    AVG(wo.duration_hours) AS avg_duration,
    COALESCE(SUM(wo.equipment_trip), 0) AS equipment_trip_count
"""


def fetch_period_aggregate(conn, start_date=None, end_date=None, constants=DEFAULT_CONSTANTS):
    sql = f"SELECT {_AGG_COLUMNS} FROM work_orders wo WHERE wo.scheduled_date BETWEEN :start AND :end"
    return _rows(conn.execute(sql, _params(start_date, end_date, constants)))[0]


def fetch_monthly_aggregates(conn, start_date=None, end_date=None, constants=DEFAULT_CONSTANTS):
    sql = f"""
        SELECT substr(wo.scheduled_date, 1, 7) AS month, {_AGG_COLUMNS}
        FROM work_orders wo
        WHERE wo.scheduled_date BETWEEN :start AND :end
        GROUP BY month ORDER BY month
    """
    return _rows(conn.execute(sql, _params(start_date, end_date, constants)))


def fetch_recent_months(conn, start_date=None, end_date=None, limit=2, constants=DEFAULT_CONSTANTS):
    """Most recent months first."""
    sql = f"""
        SELECT substr(wo.scheduled_date, 1, 7) AS month, {_AGG_COLUMNS}
        FROM work_orders wo
        WHERE wo.scheduled_date BETWEEN :start AND :end
        GROUP BY month ORDER BY month DESC LIMIT :limit
    """
    params = _params(start_date, end_date, constants)
    params['limit'] = int(limit)
    return _rows(conn.execute(sql, params))


def fetch_procedure_aggregates(conn, start_date=None, end_date=None, constants=DEFAULT_CONSTANTS):
    sql = f"""
        SELECT p.procedure_id, p.name, p.category, {_AGG_COLUMNS}
        FROM procedures p
        LEFT JOIN work_orders wo ON wo.procedure_id = p.procedure_id
            AND wo.scheduled_date BETWEEN :start AND :end
        GROUP BY p.procedure_id, p.name, p.category
        ORDER BY p.name
    """
    return _rows(conn.execute(sql, _params(start_date, end_date, constants)))


def fetch_facility_aggregates(conn, start_date=None, end_date=None, constants=DEFAULT_CONSTANTS):
    sql = f"""
        SELECT f.facility_id, f.name, f.performance_tier, {_AGG_COLUMNS}
        FROM facilities f
        LEFT JOIN work_orders wo ON wo.facility_id = f.facility_id
            AND wo.scheduled_date BETWEEN :start AND :end
        GROUP BY f.facility_id, f.name, f.performance_tier
        ORDER BY f.name
    """
    return _rows(conn.execute(sql, _params(start_date, end_date, constants)))


# Incidents split by whether the work order was executed compliantly
_SPLIT_COLUMNS = """
    COALESCE(SUM(CASE WHEN wo.compliant = 1 AND wo.safety_incident = 1 THEN 1 ELSE 0 END), 0)
        AS compliant_incidents,
    COALESCE(SUM(CASE WHEN wo.compliant = 0 AND wo.safety_incident = 1 THEN 1 ELSE 0 END), 0)
        AS noncompliant_incidents
"""


def fetch_dashboard_summary(conn, start_date=None, end_date=None, constants=DEFAULT_CONSTANTS):
    sql = f"""
        SELECT {_AGG_COLUMNS}, {_SPLIT_COLUMNS}
        FROM work_orders wo
        WHERE wo.scheduled_date BETWEEN :start AND :end
    """
    return _rows(conn.execute(sql, _params(start_date, end_date, constants)))[0]


def fetch_procedure_correlation(conn, start_date=None, end_date=None, min_work_orders=5,
                                constants=DEFAULT_CONSTANTS):
    """Procedures with at least ``min_work_orders`` in range, incidents split by compliance."""
    sql = f"""
        SELECT p.procedure_id, p.name, p.category, {_AGG_COLUMNS}, {_SPLIT_COLUMNS}
        FROM procedures p
        JOIN work_orders wo ON wo.procedure_id = p.procedure_id
        WHERE wo.scheduled_date BETWEEN :start AND :end
        GROUP BY p.procedure_id, p.name, p.category
        HAVING COUNT(wo.wo_id) >= :min_orders
        ORDER BY p.name
    """
    params = _params(start_date, end_date, constants)
    params['min_orders'] = int(min_work_orders)
    return _rows(conn.execute(sql, params))


def fetch_compliance_cohorts(conn, start_date=None, end_date=None, constants=DEFAULT_CONSTANTS):
    """One row per compliant flag (compliant first)."""
    sql = f"""
        SELECT wo.compliant AS compliant, {_AGG_COLUMNS},
            COALESCE(AVG(wo.downtime_hours), 0) AS avg_downtime_hours
        FROM work_orders wo
        WHERE wo.scheduled_date BETWEEN :start AND :end
        GROUP BY wo.compliant ORDER BY wo.compliant DESC
    """
    return _rows(conn.execute(sql, _params(start_date, end_date, constants)))


def fetch_worker_aggregates(conn, start_date=None, end_date=None, constants=DEFAULT_CONSTANTS):
    """Workers with at least one work order in range."""
    sql = f"""
        SELECT w.worker_id, w.name, w.experience_level, w.facility_id, f.name AS facility_name, {_AGG_COLUMNS}
        FROM workers w
        LEFT JOIN facilities f ON f.facility_id = w.facility_id
        JOIN work_orders wo ON wo.worker_id = w.worker_id
        WHERE wo.scheduled_date BETWEEN :start AND :end
        GROUP BY w.worker_id, w.name, w.experience_level, w.facility_id, f.name
        ORDER BY w.name
    """
    return _rows(conn.execute(sql, _params(start_date, end_date, constants)))


# ── Demo data ──

DEMO_FACILITIES = [
    ('F01', 'Baytown Refinery', 'High'),
    ('F02', 'Corpus Christi Terminal', 'Medium'),
    ('F03', 'Lake Charles Plant', 'Medium'),
    ('F04', 'Port Arthur Complex', 'Low'),
]
TIER_COMPLIANCE_SHIFT = {'High': 0.06, 'Medium': 0.0, 'Low': -0.08}

# (id, name, category, base probability of a compliant execution)
DEMO_PROCEDURES = [
    ('P001', 'Lockout/Tagout Isolation', 'Safety', 0.93),
    ('P002', 'Pump Seal Replacement', 'Mechanical', 0.86),
    ('P003', 'Heat Exchanger Cleaning', 'Mechanical', 0.82),
    ('P004', 'Confined Space Entry', 'Safety', 0.90),
    ('P005', 'Motor Control Center Inspection', 'Electrical', 0.88),
    ('P006', 'Relief Valve Testing', 'Instrumentation', 0.78),
    ('P007', 'Transmitter Calibration', 'Instrumentation', 0.91),
    ('P008', 'Hot Work Permit', 'Safety', 0.74),
]

# (id, name, experience level, home facility)
DEMO_WORKERS = [
    ('W01', 'Dana Ortiz', 'Senior', 'F01'),
    ('W02', 'Marcus Reed', 'Junior', 'F01'),
    ('W03', 'Priya Nair', 'Mid', 'F02'),
    ('W04', 'Tom Kowalski', 'Senior', 'F02'),
    ('W05', 'Lena Fischer', 'Mid', 'F03'),
    ('W06', 'Andre Baptiste', 'Junior', 'F03'),
    ('W07', 'Grace Lin', 'Mid', 'F04'),
    ('W08', 'Victor Salas', 'Junior', 'F04'),
]
EXPERIENCE_COMPLIANCE_SHIFT = {'Senior': 0.04, 'Mid': 0.0, 'Junior': -0.05}


def seed_demo_data(conn, months=18, start=date(2024, 1, 1), seed=42):
    """Create tables and insert a reproducible data set when work_orders is empty.
    Returns the number of work orders inserted."""
    init_schema(conn)
    if conn.execute("SELECT COUNT(*) FROM work_orders").fetchone()[0]:
        return 0

    rng = random.Random(seed)
    conn.executemany("INSERT OR IGNORE INTO facilities VALUES (?, ?, ?)", DEMO_FACILITIES)
    conn.executemany("INSERT OR IGNORE INTO procedures VALUES (?, ?, ?)",
                     [(pid, name, cat) for pid, name, cat, _ in DEMO_PROCEDURES])
    conn.executemany("INSERT OR IGNORE INTO workers VALUES (?, ?, ?, ?)", DEMO_WORKERS)
    crews = {fid: [w for w in DEMO_WORKERS if w[3] == fid] for fid, _, _ in DEMO_FACILITIES}

    rows = []
    for m in range(months):
        idx = start.year * 12 + start.month - 1 + m
        year, month = idx // 12, idx % 12 + 1
        drift = m * 0.002   # slow compliance improvement over the period
        for pid, _, _, base in DEMO_PROCEDURES:
            for _ in range(rng.randint(3, 7)):
                fid, _, tier = rng.choice(DEMO_FACILITIES)
                wid, _, level, _ = rng.choice(crews[fid])
                shift = TIER_COMPLIANCE_SHIFT[tier] + EXPERIENCE_COMPLIANCE_SHIFT[level]
                p_ok = clamp(base + shift + drift, 0.05, 0.99)
                ok = rng.random() < p_ok
                incident = rng.random() < (0.01 if ok else 0.08)
                rework = rng.random() < (0.03 if ok else 0.20)
                downtime = round(rng.uniform(0.5, 6.0), 1) if (incident or rework) else 0.0
                quality = round(clamp(rng.gauss(8.3 if ok else 6.4, 0.8), 1.0, 10.0), 1)
                duration = round(rng.uniform(1.5, 3.5) + (0.0 if ok else 0.6), 2)
                trip = rng.random() < (0.02 if ok else 0.10)
                day = rng.randint(1, 28)
                rows.append((
                    f"WO-{len(rows) + 1:05d}", pid, fid, f"{year:04d}-{month:02d}-{day:02d}",
                    int(ok), int(incident), int(rework), downtime, quality, duration, int(trip), wid,
                ))

    conn.executemany("INSERT INTO work_orders VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)", rows)
    conn.commit()
    logging.info(f"[seed] inserted {len(rows):,} demo work orders across {months} months")
    return len(rows)
