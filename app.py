"""
OptiSys Profit Navigator: Flask API Server
Work-order aggregates -> cost model, risk, trends, scenario, correlation and
worker engines -> JSON.
"""
import io
import logging
import math
import os
import traceback
from contextlib import closing
from datetime import date

from flask import Flask, jsonify, request, send_file

from engines.assistant import AssistantError, ask_assistant
from engines.cost_model import (DEFAULT_CONSTANTS, PeriodAggregate, clamp, round_half_up, run_breakdown,
                                run_facility_profit, run_procedure_profit, run_summary)
from engines.correlation import MIN_CORRELATION_WORK_ORDERS, run_cohort_comparison, run_correlation
from engines.data_loader import (DEFAULT_END_DATE, DEFAULT_START_DATE, connect, fetch_compliance_cohorts,
                                 fetch_dashboard_summary, fetch_facility_aggregates, fetch_monthly_aggregates,
                                 fetch_period_aggregate, fetch_procedure_aggregates, fetch_procedure_correlation,
                                 fetch_recent_months, fetch_worker_aggregates, init_schema, load_cost_constants,
                                 seed_demo_data)
from engines.risk import run_risk
from engines.scenario import Scenario, compare_scenarios, new_saved_scenario, rebase_total_cost, run_scenario
from engines.settings import get_settings
from engines.trends import run_trends
from engines.workers import run_worker_performance

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(message)s')

app = Flask(__name__)

STATE = {
    'constants': None, 'scenarios': [],
    'loaded': False, '_load_error': None,
}

ASSISTANT_UNAVAILABLE = "The assistant is unavailable right now. Please try again in a moment."
MAX_PROJECTION_MONTHS = 24
MAX_SAVED_SCENARIOS = 50


class RequestError(ValueError):
    pass


def _load():
    settings = get_settings()
    STATE['constants'] = load_cost_constants(str(settings.resolved_cost_constants_path))
    with closing(_db()) as conn:
        if settings.seed_demo_data:
            seed_demo_data(conn)
        else:
            init_schema(conn)
    STATE['loaded'] = True


@app.before_request
def _ensure_loaded():
    if not STATE['loaded'] and not STATE.get('_load_error'):
        try:
            _load()
            logging.info("[OK] OptiSys engines loaded (db: %s)", get_settings().resolved_database_path)
        except Exception as e:
            STATE['_load_error'] = f"{type(e).__name__}: {e}"
            logging.error("[!] ENGINE LOAD FAILED: %s", STATE['_load_error'])
            traceback.print_exc()


def _db():
    return connect(get_settings().resolved_database_path)


def _constants():
    return STATE['constants'] or DEFAULT_CONSTANTS


def _date_arg(source, name, default):
    raw = source.get(name) or default
    try:
        return date.fromisoformat(str(raw)[:10]).isoformat()
    except ValueError:
        raise RequestError(f"{name} must be an ISO date (YYYY-MM-DD)")


def _date_range(source=None):
    src = request.args if source is None else source
    start = _date_arg(src, 'startDate', DEFAULT_START_DATE)
    end = _date_arg(src, 'endDate', DEFAULT_END_DATE)
    if start > end:
        raise RequestError("startDate must not be after endDate")
    return start, end


def _float_arg(name, default=None):
    raw = request.args.get(name)
    if raw in (None, ''):
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RequestError(f"{name} must be numeric")
    if not math.isfinite(value):
        raise RequestError(f"{name} must be finite")
    return value


def _json_body():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise RequestError("JSON object body required")
    return body


def _period(conn, start, end, c):
    return PeriodAggregate.from_row(fetch_period_aggregate(conn, start, end, c), c)


def _not_loaded():
    return jsonify({'error': 'Not loaded', 'reason': STATE.get('_load_error')}), 503


# ══════════════════════════════════════════════════════════════
#  ROUTES
# ══════════════════════════════════════════════════════════════

@app.route('/api/health')
def api_health():
    settings = get_settings()
    return jsonify({
        'status': 'ok' if STATE['loaded'] else 'error',
        'loaded': STATE['loaded'], 'loadError': STATE.get('_load_error'),
        'database': str(settings.resolved_database_path),
        'llmEnabled': settings.llm_enabled,
    })


@app.route('/api/refresh', methods=['POST'])
def api_refresh():
    """Reload cost constants and retry a failed start-up."""
    try:
        STATE['loaded'] = False
        STATE['_load_error'] = None
        _load()
        return jsonify({'status': 'ok', 'constants': _constants().as_dict()})
    except Exception as e:
        traceback.print_exc()
        STATE['_load_error'] = f"{type(e).__name__}: {e}"
        return jsonify({'status': 'error', 'message': str(e)}), 500


@app.route('/api/dashboard/summary')
def api_dashboard_summary():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        with closing(_db()) as conn:
            row = fetch_dashboard_summary(conn, start, end, c)
        return jsonify(run_summary(row, c))
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch dashboard summary'}), 500


@app.route('/api/dashboard/predictive')
def api_dashboard_predictive():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        with closing(_db()) as conn:
            rows = fetch_procedure_aggregates(conn, start, end, c)
        return jsonify(run_risk(rows, c))
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch predictive analytics'}), 500


@app.route('/api/dashboard/workers')
def api_dashboard_workers():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        with closing(_db()) as conn:
            rows = fetch_worker_aggregates(conn, start, end, c)
        return jsonify(run_worker_performance(rows, c))
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch worker performance'}), 500


@app.route('/api/compliance/scatter')
def api_compliance_scatter():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        with closing(_db()) as conn:
            rows = fetch_procedure_correlation(conn, start, end, MIN_CORRELATION_WORK_ORDERS, c)
        return jsonify(run_correlation(rows, c))
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch correlation data'}), 500


@app.route('/api/compliance/split-screen')
def api_compliance_split_screen():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        with closing(_db()) as conn:
            rows = fetch_compliance_cohorts(conn, start, end, c)
        result = run_cohort_comparison(rows, c)
        if not result['sufficientData']:
            return jsonify({'error': 'Insufficient data'}), 404
        return jsonify(result)
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch compliance data'}), 500


@app.route('/api/profit/breakdown')
def api_profit_breakdown():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        target = _float_arg('targetCompliance')
        if target is not None:
            target = clamp(target, 0.0, 100.0)
        with closing(_db()) as conn:
            agg = _period(conn, start, end, c)
            recent = [PeriodAggregate.from_row(r, c) for r in fetch_recent_months(conn, start, end, 2, c)]
        return jsonify(run_breakdown(agg, c, target, recent))
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch profit breakdown'}), 500


@app.route('/api/profit/facility')
def api_profit_facility():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        with closing(_db()) as conn:
            rows = fetch_facility_aggregates(conn, start, end, c)
        return jsonify(run_facility_profit(rows, c))
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch facility profit analysis'}), 500


@app.route('/api/profit/procedure')
def api_profit_procedure():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        with closing(_db()) as conn:
            rows = fetch_procedure_aggregates(conn, start, end, c)
        return jsonify(run_procedure_profit(rows, c))
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch procedure profit analysis'}), 500


@app.route('/api/profit/trends')
def api_profit_trends():
    if not STATE['loaded']: return _not_loaded()
    try:
        start, end = _date_range(); c = _constants()
        months = _float_arg('projectionMonths', 6)
        months = int(clamp(int(months), 1, MAX_PROJECTION_MONTHS))
        with closing(_db()) as conn:
            rows = fetch_monthly_aggregates(conn, start, end, c)
        return jsonify(run_trends(rows, months, c))
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to fetch trend projection'}), 500


@app.route('/api/profit/scenario', methods=['POST'])
def api_profit_scenario():
    if not STATE['loaded']: return _not_loaded()
    try:
        body = _json_body(); c = _constants()
        start, end = _date_range(body)
        scenario = Scenario.from_dict(body, c)
        with closing(_db()) as conn:
            agg = _period(conn, start, end, c)
        result = run_scenario(scenario, rebase_total_cost(agg, scenario, c), agg.compliance_rate, c)
        result['baseline'] = {'workOrderCount': agg.work_order_count,
                              'complianceRate': round_half_up(agg.compliance_rate, 1)}
        return jsonify(result)
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to run scenario'}), 500


def _scenario_comparison():
    start, end = _date_range(); c = _constants()
    with closing(_db()) as conn:
        agg = _period(conn, start, end, c)
    return compare_scenarios(STATE['scenarios'], agg, c)


@app.route('/api/profit/scenarios', methods=['GET', 'POST', 'DELETE'])
def api_profit_scenarios():
    if not STATE['loaded']: return _not_loaded()
    try:
        if request.method == 'POST':
            entry = new_saved_scenario(Scenario.from_dict(_json_body(), _constants()))
            STATE['scenarios'] = (STATE['scenarios'] + [entry])[-MAX_SAVED_SCENARIOS:]
            out = _scenario_comparison(); out['savedId'] = entry['id']
            return jsonify(out), 201
        if request.method == 'DELETE':
            STATE['scenarios'] = []
        return jsonify(_scenario_comparison())
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to process saved scenarios'}), 500


@app.route('/api/profit/scenarios/<scenario_id>', methods=['DELETE'])
def api_delete_scenario(scenario_id):
    if not STATE['loaded']: return _not_loaded()
    kept = [s for s in STATE['scenarios'] if s['id'] != scenario_id]
    if len(kept) == len(STATE['scenarios']):
        return jsonify({'error': f"Scenario {scenario_id} not found"}), 404
    STATE['scenarios'] = kept
    try:
        return jsonify(_scenario_comparison())
    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to process saved scenarios'}), 500


@app.route('/api/ai/assistant', methods=['POST'])
def api_assistant():
    body = request.get_json(silent=True) or {}
    question = str(body.get('question') or '').strip() if isinstance(body, dict) else ''
    if not question:
        return jsonify({'error': 'Question is required'}), 400
    settings = get_settings()
    if not settings.llm_enabled:
        return jsonify({'error': ASSISTANT_UNAVAILABLE}), 503
    try:
        return jsonify(ask_assistant(question, body.get('dashboardData') or {}, settings))
    except AssistantError as e:
        logging.error("[assistant] %s", e)
        return jsonify({'error': ASSISTANT_UNAVAILABLE}), 502
    except Exception:
        traceback.print_exc()
        return jsonify({'error': ASSISTANT_UNAVAILABLE}), 502


@app.route('/api/export')
def api_export():
    """Export breakdown, facility, risk and trend results to Excel."""
    if not STATE['loaded']: return _not_loaded()
    try:
        import openpyxl
        from openpyxl.styles import Font, PatternFill, Alignment, Border, Side

        start, end = _date_range(); c = _constants()
        with closing(_db()) as conn:
            agg = _period(conn, start, end, c)
            recent = [PeriodAggregate.from_row(r, c) for r in fetch_recent_months(conn, start, end, 2, c)]
            facility_rows = fetch_facility_aggregates(conn, start, end, c)
            procedure_rows = fetch_procedure_aggregates(conn, start, end, c)
            monthly_rows = fetch_monthly_aggregates(conn, start, end, c)
        bd = run_breakdown(agg, c, None, recent)
        fac = run_facility_profit(facility_rows, c)
        risk = run_risk(procedure_rows, c)
        trends = run_trends(monthly_rows, 6, c)

        wb = openpyxl.Workbook()
        hf = Font(bold=True, color='FFFFFF', size=11)
        hfill = PatternFill(start_color='1F3A5F', end_color='1F3A5F', fill_type='solid')
        tb = Border(left=Side(style='thin'), right=Side(style='thin'),
                    top=Side(style='thin'), bottom=Side(style='thin'))

        def ws_write(ws, headers, rows):
            for col, h in enumerate(headers, 1):
                cell = ws.cell(row=1, column=col, value=h)
                cell.font = hf; cell.fill = hfill; cell.alignment = Alignment(horizontal='center'); cell.border = tb
            for r, row in enumerate(rows, 2):
                for col, val in enumerate(row, 1):
                    cell = ws.cell(row=r, column=col, value=val); cell.border = tb
            for column in ws.columns:
                ml = max(len(str(cell.value or '')) for cell in column)
                ws.column_dimensions[column[0].column_letter].width = min(ml + 2, 40)

        # 1. Profit summary
        ws = wb.active; ws.title = 'Profit Summary'
        ws_write(ws, ['Metric', 'Value'], [
            ['Period', f"{start} to {end}"],
            ['Work Orders', format_number(bd['workOrderCount'])],
            ['Compliance Rate', f"{bd['complianceRate']:.1f}%"],
            ['Total Profit Impact', format_currency(bd['totalProfitImpact'])],
            ['Potential Savings', format_currency(bd['potentialSavings'])],
            ['Target Compliance', f"{bd['targetCompliance']:.1f}%"],
            ['Month-over-Month', f"{bd['monthOverMonthTrend']:+.1f}%"],
        ])

        # 2. Cost categories
        ws2 = wb.create_sheet('Cost Breakdown')
        ws_write(ws2, ['Category', 'Cost', '% of Total'], [
            [cat.capitalize(), format_currency(v['total']), f"{v['percentOfTotal']:.1f}%"]
            for cat, v in bd['categories'].items()
        ])

        # 3. Facilities
        ws3 = wb.create_sheet('Facilities')
        ws_write(ws3, ['Rank', 'Facility', 'Tier', 'Work Orders', 'Compliance', 'Profit Impact', 'Potential Savings'], [
            [f['rank'], f['name'], f['performanceTier'], format_number(f['workOrderCount']),
             f"{f['complianceRate']:.1f}%", format_currency(f['profitImpact']), format_currency(f['potentialSavings'])]
            for f in fac['facilities']
        ])

        # 4. Procedure risk
        ws4 = wb.create_sheet('Procedure Risk')
        ws_write(ws4, ['Procedure', 'Category', 'Work Orders', 'Compliance', 'Incident Rate',
                       'Risk Score', 'Risk Category', 'Recommendation'], [
            [p['name'], p['category'], p['totalWorkOrders'], f"{p['complianceRate']:.1f}%",
             f"{p['incidentRate']:.1f}%", p['riskScore'], p['riskCategory'], p['recommendation']]
            for p in risk['procedures']
        ])

        # 5. Trends
        ws5 = wb.create_sheet('Trends')
        ws_write(ws5, ['Month', 'Total Cost', 'Compliance', 'Incidents', 'Low', 'High', 'Projected'], [
            [t['month'], format_currency(t['totalCost']), f"{t['complianceRate']:.1f}%", t['incidentCount'],
             format_currency(t['confidenceMin']) if t['isProjection'] else '',
             format_currency(t['confidenceMax']) if t['isProjection'] else '',
             'Yes' if t['isProjection'] else 'No']
            for t in trends['historical'] + trends['projected']
        ])

        buf = io.BytesIO()
        wb.save(buf)
        buf.seek(0)
        return send_file(buf, as_attachment=True, download_name='OptiSys_Profit_Export.xlsx',
                         mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')

    except RequestError as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        traceback.print_exc()
        return jsonify({'error': 'Failed to export workbook'}), 500


# ══════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════

def format_currency(value):
    value = round_half_up(value or 0)
    return f"-${abs(value):,.0f}" if value < 0 else f"${value:,.0f}"


def format_number(value, decimals=0):
    return f"{value or 0:,.{decimals}f}"


if __name__ == '__main__':
    app.run(debug=False, host='0.0.0.0', port=int(os.environ.get('PORT', get_settings().port)))
