"""
app.py - Competency grading service
Builds the Flask app: settings, database, the grades API, the
`flask grades` commands and log output.
"""

import logging

from flask import Flask, jsonify
from config import config
from extensions import db, migrate

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def create_app(config_name='development'):
    """
    Build a configured app.

    Args:
        config_name (str): Key of the `config` dict ('development', 'production', 'testing')

    Returns:
        Flask: app with extensions, blueprints and commands registered
    """
    app = Flask(__name__)

    settings = config[config_name]
    app.config.from_object(settings)
    settings.init_app(app)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)

    register_blueprints(app)
    register_error_handlers(app)

    from cli import register_commands
    register_commands(app)

    # Model classes must be imported for `flask db migrate` to see the tables
    with app.app_context():
        import models  # noqa: F401

    return app


def configure_logging(app):
    """
    Send service and app logs to stderr at LOG_LEVEL
    """
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    app.logger.setLevel(level)

    for name in ('services', 'models'):
        logger = logging.getLogger(name)
        logger.setLevel(level)
        # create_app may run many times (tests); keep a single handler
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)


def register_blueprints(app):
    """
    Mount the grades API and the health check
    """
    from blueprints.grades.routes import grades_bp

    app.register_blueprint(grades_bp, url_prefix='/api/grades')

    @app.route('/health')
    def health():
        """Liveness check"""
        return jsonify({'status': 'ok'})


def register_error_handlers(app):
    """
    JSON bodies for HTTP errors raised outside the grades blueprint
    """
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        original = getattr(error, 'original_exception', None) or error
        app.logger.error('Unhandled error: %s', original, exc_info=original)
        return jsonify({'success': False, 'error': 'Internal server error'}), 500


# Development server
if __name__ == '__main__':
    app = create_app('development')

    app.run(
        host='0.0.0.0',
        port=5000,
        debug=True
    )
