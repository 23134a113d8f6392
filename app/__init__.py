"""Flask application factory."""
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from app.database import init_db
import logging
import os
import click


def _configure_logging(app):
    """Root logging config so service loggers (logging.getLogger(__name__)) are emitted."""
    level = logging.DEBUG if app.debug else logging.INFO
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
        )
    logging.getLogger('app').setLevel(level)


def _expiry_job_wanted(app):
    """The sweep runs in server processes only, never inside a Flask CLI command."""
    if not app.config.get('EXPIRY_JOB_ENABLED') or app.config.get('TESTING'):
        return False
    return click.get_current_context(silent=True) is None


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Sentry for error tracking in production
    if app.config.get('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Prometheus metrics instrumentation
    from app.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production' or app.config.get('FLASK_ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Error Handlers
    from app.exceptions import PresuError

    @app.errorhandler(PresuError)
    def handle_presu_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"PresuError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"PresuError [{error.status_code}] {request.method} {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        import traceback
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from app.blueprints.main import main_bp
    from app.blueprints.metrics import metrics_bp
    from app.blueprints.margenes import margenes_bp
    from app.blueprints.materiales import materiales_bp
    from app.blueprints.presupuestos import presupuestos_bp
    from app.blueprints.plantillas import plantillas_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(margenes_bp)
    app.register_blueprint(materiales_bp)
    app.register_blueprint(presupuestos_bp)
    app.register_blueprint(plantillas_bp)

    # Register CLI commands
    from app.cli_commands import init_cli_commands
    init_cli_commands(app)

    # Background expiry sweep (one per server process)
    if _expiry_job_wanted(app):
        from app.services.presupuesto_estado_service import start_expiry_job
        start_expiry_job(app)

    return app
