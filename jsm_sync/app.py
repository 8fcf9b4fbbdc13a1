"""
Flask Application Factory
Trigger endpoint and scheduler for the Jira Service Management sync job.
"""

import os
from datetime import datetime

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from flask import Flask, jsonify
from flask_cors import CORS

from jsm_sync.config_manager import ConfigManager, SyncSettings
from jsm_sync.database.connection import Warehouse
from jsm_sync.utils.logger import setup_logging, get_logger

DEFAULT_SYNC_SCHEDULE = '0 * * * *'  # hourly, matching the default lookback


def create_app(
    settings: SyncSettings = None,
    scheduler: BackgroundScheduler = None,
    warehouse: Warehouse = None
) -> Flask:
    """
    Application factory for the trigger service.
    
    Args:
        settings: Run settings; resolved from configuration when omitted
        scheduler: Scheduler that executes triggered runs
        warehouse: Warehouse used by the status endpoints (created lazily)
        
    Returns:
        Configured Flask application
    """
    setup_logging()
    logger = get_logger(__name__)
    
    settings = settings or SyncSettings.from_config()
    
    app = Flask(__name__)
    app.json.sort_keys = False
    
    CORS(app)
    
    holder = {'warehouse': warehouse}
    
    def get_warehouse() -> Warehouse:
        if holder['warehouse'] is None:
            holder['warehouse'] = Warehouse.from_settings(settings)
        return holder['warehouse']
    
    app.extensions['jsm_sync'] = {
        'settings': settings,
        'scheduler': scheduler if scheduler is not None else create_scheduler(settings),
        'warehouse': get_warehouse,
    }
    
    from jsm_sync.api.sync_routes import sync_bp
    app.register_blueprint(sync_bp)
    
    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        healthy = get_warehouse().check_connection()
        
        return jsonify({
            'status': 'healthy' if healthy else 'degraded',
            'timestamp': datetime.now(pytz.UTC).isoformat(),
            'warehouse': 'connected' if healthy else 'disconnected'
        })
    
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'success': False,
            'error': 'Not found'
        }), 404
    
    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({
            'success': False,
            'error': 'Internal server error'
        }), 500
    
    logger.info("Flask application created")
    
    return app


def create_scheduler(settings: SyncSettings) -> BackgroundScheduler:
    """
    Create the background scheduler with the recurring incremental run.
    
    Triggered runs are added to the same scheduler as one-off jobs.
    """
    logger = get_logger(__name__)
    scheduler_config = ConfigManager().get_scheduler_config()
    
    scheduler = BackgroundScheduler(timezone=pytz.UTC)
    
    if not scheduler_config.get('enabled', True):
        logger.info("Scheduled sync is disabled")
        return scheduler
    
    sync_schedule = scheduler_config.get('sync_schedule') or DEFAULT_SYNC_SCHEDULE
    
    @scheduler.scheduled_job(CronTrigger.from_crontab(sync_schedule, timezone=pytz.UTC), id='scheduled-sync')
    def scheduled_sync():
        """Scheduled incremental sync."""
        logger.info("Running scheduled sync")
        from jsm_sync.api.sync_routes import run_triggered_sync
        run_triggered_sync(execution_id=f"scheduled-{datetime.now(pytz.UTC):%Y%m%dT%H%M%S}", settings=settings)
    
    return scheduler


def main() -> None:
    """Run the trigger service with the development server."""
    app = create_app()
    scheduler = app.extensions['jsm_sync']['scheduler']
    scheduler.start()
    
    try:
        app.run(
            host='0.0.0.0',
            port=int(os.getenv('PORT', os.getenv('FLASK_PORT', 8080))),
            debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true'
        )
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        scheduler.shutdown()


if __name__ == '__main__':
    main()
