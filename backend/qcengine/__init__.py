from flask import Flask
from flask_cors import CORS
import logging
from logging.handlers import RotatingFileHandler
import os

from .config import config
from .models.sampling_plan import DEFAULT_SAMPLING_PLAN, SamplingPlan
from .routes.engine import engine_bp

__version__ = "1.0.0"


def load_sampling_plan(app):
    """Load the configured sampling plan; a broken plan stops start-up."""
    path = app.config.get('SAMPLING_PLAN_PATH')
    if not path:
        return DEFAULT_SAMPLING_PLAN
    try:
        plan = SamplingPlan.from_file(path)
    except Exception as e:
        app.logger.error(f'Failed to load sampling plan from {path}: {e}')
        raise
    app.logger.info(f'Loaded sampling plan from {path} with buckets {plan.buckets}')
    return plan


def create_app(config_name='default'):
    """Application factory function"""

    # Create Flask app
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])

    # Initialize logging
    if not app.debug and not app.testing:
        log_dir = app.config['LOG_DIR']
        if not os.path.exists(log_dir):
            os.mkdir(log_dir)
        file_handler = RotatingFileHandler(os.path.join(log_dir, 'qcengine.log'), maxBytes=10240, backupCount=10)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(app.config['LOG_LEVEL'])
        app.logger.addHandler(file_handler)
        logging.getLogger('qcengine').addHandler(file_handler)

        app.logger.setLevel(app.config['LOG_LEVEL'])
        app.logger.info('QC engine startup')

    # Initialize CORS
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    # Sampling plan is read-only for the lifetime of the app
    app.extensions['sampling_plan'] = load_sampling_plan(app)

    # Register blueprints
    app.register_blueprint(engine_bp)

    # Health check endpoint
    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return {
            'status': 'healthy',
            'message': 'QC engine is running',
            'version': __version__
        }

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return {
            'success': False,
            'message': 'Endpoint not found',
            'error': 'NOT_FOUND'
        }, 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return {
            'success': False,
            'message': 'Method not allowed',
            'error': 'METHOD_NOT_ALLOWED'
        }, 405

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f'Server Error: {error}')
        return {
            'success': False,
            'message': 'Internal server error',
            'error': 'INTERNAL_ERROR'
        }, 500

    return app
