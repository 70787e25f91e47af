"""
Telematics Tracker - Flask Application

Polls linked telematics accounts in the background and serves vehicle state
and battery health over a JSON API.
"""

import atexit
import logging
import os

from config import Config
from database import engine, init_app as init_db
from extensions import limiter
from flask import Flask, jsonify
from models import Base
from routes import register_blueprints
from services.scheduler import get_poll_scheduler, init_scheduler, shutdown_scheduler
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from utils import utc_now

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TESTING = os.environ.get('FLASK_TESTING', '').lower() == 'true'

# Initialize Flask app
app = Flask(__name__)
app.config.from_object(Config)
app.config['RATELIMIT_ENABLED'] = not TESTING

init_db(app)
limiter.init_app(app)
register_blueprints(app)


@app.route('/api/health', methods=['GET'])
@limiter.exempt
def health_check():
    """Report database connectivity and scheduler state."""
    database_ok = True
    try:
        with engine.connect() as conn:
            conn.execute(text('SELECT 1'))
    except OperationalError as e:
        logger.error(f"Health check database error: {e}")
        database_ok = False

    scheduler = get_poll_scheduler()
    return jsonify({
        'status': 'healthy' if database_ok else 'degraded',
        'database': 'ok' if database_ok else 'error',
        'scheduler_running': scheduler.scheduler.running,
        'scheduled_accounts': len(scheduler.scheduler.get_jobs()),
        'timestamp': utc_now().isoformat(),
    }), 200 if database_ok else 503


@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(429)
def rate_limited(error):
    return jsonify({'error': 'Rate limit exceeded', 'detail': str(error.description)}), 429


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"Internal server error: {error}")
    return jsonify({'error': 'Internal server error'}), 500


if not TESTING:
    Base.metadata.create_all(engine)
    if Config.SCHEDULER_ENABLED:
        init_scheduler()
        atexit.register(shutdown_scheduler)


if __name__ == '__main__':
    app.run(host=Config.FLASK_HOST, port=Config.FLASK_PORT, debug=Config.DEBUG)
