"""Main blueprint: health check for the database and the expiry sweep."""
from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from app.database import get_session

main_bp = Blueprint('main', __name__)


def _expiry_status():
    job = current_app.extensions.get('presupuesto_expiry_job')
    if job is None:
        return {'enabled': False}
    return {
        'enabled': True,
        'running': job.is_running,
        'interval_minutes': job.interval_seconds // 60,
        'last_run_at': job.last_run_at.isoformat() if job.last_run_at else None,
        'last_expirados': job.last_expirados,
    }


@main_bp.route('/health')
def health():
    """
    Health check: database connection plus expiry sweep status.

    Returns:
        200: Healthy (DB connected)
        503: Unhealthy (DB error)
    """
    status = {
        'expiry_job': _expiry_status(),
        'pdf_provider': current_app.config.get('OFERTA_PDF_PROVIDER', 'none'),
    }

    try:
        get_session().execute(text("SELECT 1")).scalar_one()
    except Exception as e:
        current_app.logger.error(f"[HEALTH] Base de datos no disponible: {e}")
        status.update({'status': 'unhealthy', 'database': 'disconnected', 'error': str(e)})
        return jsonify(status), 503

    status.update({'status': 'healthy', 'database': 'connected'})
    return jsonify(status), 200
