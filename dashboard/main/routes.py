from functools import wraps
import io

from flask import (
    Blueprint,
    abort,
    current_app,
    jsonify,
    request,
    send_file,
    session,
)

from dashboard import db as db_module
from dashboard import get_context
from dashboard.errors import DashboardError, ValidationFailed
from dashboard.main.exports import (
    PdfGenerationError,
    build_document,
    build_workbook,
    render_html_to_pdf,
    render_records_html,
)
from dashboard.queries import FilterSet

main_bp = Blueprint('main', __name__, url_prefix='/api')


@main_bp.errorhandler(DashboardError)
def _dashboard_error(exc: DashboardError):
    if exc.status >= 500:
        current_app.logger.error("%s: %s", exc.code, exc)
    return jsonify({'message': str(exc), 'error': exc.code}), exc.status


def login_required(view):
    @wraps(view)
    def wrapped_view(**kwargs):
        if 'email' not in session:
            abort(401, description="Authentication required")
        return view(**kwargs)

    return wrapped_view


def _json_object() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _filters() -> FilterSet:
    payload = request.args.to_dict()
    if request.method == 'POST':
        payload.update(_json_object())
    return FilterSet.from_mapping(payload)


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw in (None, ''):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationFailed(f"{name} must be a whole number") from exc


# -- catalog ------------------------------------------------------------------


@main_bp.route('/tables', methods=['GET'])
@login_required
def list_tables():
    return jsonify(db_module.list_tables(get_context()))


@main_bp.route('/tables/<table>/structure', methods=['GET'])
@login_required
def table_structure(table):
    return jsonify(db_module.get_table_structure(get_context(), table))


@main_bp.route('/tables/<table>/sample', methods=['GET'])
@login_required
def table_sample(table):
    limit = _int_arg('limit', 10)
    return jsonify(db_module.get_sample_data(get_context(), table, limit))


@main_bp.route('/schema', methods=['GET'])
@login_required
def detect_schema():
    schema = db_module.infer_schema(get_context(), request.args.get('table'))
    return jsonify(schema.to_dict() if schema else None)


@main_bp.route('/identifiers', methods=['GET'])
@login_required
def unique_identifiers():
    return jsonify(db_module.get_unique_identifiers(get_context(), request.args.get('table')))


# -- records ------------------------------------------------------------------


@main_bp.route('/records', methods=['GET', 'POST'])
@login_required
def all_records():
    return jsonify(db_module.get_all_records(get_context(), _filters()))


@main_bp.route('/records/page', methods=['GET', 'POST'])
@login_required
def paginated_records():
    return jsonify(db_module.get_paginated_records(get_context(), _filters()))


@main_bp.route('/records/recent', methods=['GET'])
@login_required
def recent_records():
    days = _int_arg('days', 30)
    return jsonify(
        db_module.get_recent_records(get_context(), request.args.get('table'), days)
    )


@main_bp.route('/records/history', methods=['POST'])
@login_required
def record_history():
    payload = _json_object()
    return jsonify(
        db_module.get_record_history(
            get_context(), payload.get('record'), payload.get('tableName')
        )
    )


@main_bp.route('/records/export', methods=['GET'])
@login_required
def export_records():
    filters = _filters()
    fmt = (request.args.get('format') or 'xlsx').lower()
    if fmt not in ('xlsx', 'pdf', 'docx'):
        return jsonify({'message': 'Unsupported format. Choose xlsx, pdf or docx.'}), 400

    result = db_module.get_all_records(get_context(), filters)
    title = f"{result['schema']['tableName']} report"
    filename_stem = f"{result['schema']['tableName']}_report"

    if fmt == 'pdf':
        html = render_records_html(title, result['columns'], result['records'], result['stats'])
        try:
            pdf = render_html_to_pdf(html, base_url=request.url_root)
        except PdfGenerationError as exc:
            return jsonify({'message': str(exc)}), 503
        return send_file(
            io.BytesIO(pdf),
            mimetype='application/pdf',
            download_name=f"{filename_stem}.pdf",
            as_attachment=True,
        )

    if fmt == 'docx':
        document = build_document(result['columns'], result['records'], title=title)
        return send_file(
            io.BytesIO(document),
            mimetype='application/vnd.openxmlformats-officedocument.wordprocessingml.document',
            download_name=f"{filename_stem}.docx",
            as_attachment=True,
        )

    workbook = build_workbook(result['columns'], result['records'], title=title)
    return send_file(
        io.BytesIO(workbook),
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        download_name=f"{filename_stem}.xlsx",
        as_attachment=True,
    )


# -- summaries ----------------------------------------------------------------


@main_bp.route('/summary', methods=['GET', 'POST'])
@login_required
def production_summary():
    return jsonify(db_module.get_production_summary(get_context(), _filters()))


@main_bp.route('/machines', methods=['GET', 'POST'])
@login_required
def machine_rollups():
    return jsonify(db_module.get_machine_rollups(get_context(), _filters()))


# -- connection settings --------------------------------------------------------


@main_bp.route('/db/config', methods=['GET'])
@login_required
def get_db_config():
    return jsonify(db_module.get_connection_config(get_context()).to_dict())


@main_bp.route('/db/config', methods=['POST'])
@login_required
def save_db_config():
    payload = _json_object()
    db_module.save_connection_config(get_context(), payload)
    return jsonify({'success': True})


@main_bp.route('/db/test', methods=['POST'])
@login_required
def test_db_connection():
    payload = _json_object()
    return jsonify(db_module.check_connection(get_context(), payload))


@main_bp.route('/db/logout', methods=['POST'])
@login_required
def db_logout():
    db_module.clear_connection_config(get_context())
    return jsonify({'success': True})
