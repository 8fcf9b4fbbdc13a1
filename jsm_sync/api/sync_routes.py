"""
Sync API Blueprint
Trigger endpoint for on-demand runs, plus run status lookups.
"""

import hmac
from uuid import uuid4

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from jsm_sync.database.models import SyncRun
from jsm_sync.sync_pipeline import SyncError, run_sync
from jsm_sync.utils.helpers import is_valid_identifier, is_valid_iso_utc, is_valid_location
from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)

sync_bp = Blueprint('sync', __name__, url_prefix='/api/sync')


def _state() -> dict:
    return current_app.extensions['jsm_sync']


def _bearer_token() -> str:
    header = request.headers.get('Authorization', '')
    return header[len('Bearer '):] if header.startswith('Bearer ') else ''


def _authorized(secret: str) -> bool:
    token = _bearer_token()
    if not token or not secret:
        return False
    return hmac.compare_digest(token.encode('utf-8'), secret.encode('utf-8'))


def _invalid_deployment_settings(settings) -> list:
    """Names of deployment settings that fail validation (logged, never returned)."""
    invalid = []
    for name in ('project', 'dataset', 'staging_table', 'job_name'):
        if not is_valid_identifier(getattr(settings, name)):
            invalid.append(name)
    if not is_valid_location(settings.location):
        invalid.append('location')
    return invalid


def run_triggered_sync(since: str = None, execution_id: str = None, settings=None) -> None:
    """Background job body; a failed run is logged and recorded, not re-raised."""
    try:
        run_sync(since=since, execution_id=execution_id, settings=settings)
    except SyncError as e:
        logger.error(f"Triggered sync {execution_id} failed at stage {e.stage}: {e.message}")


@sync_bp.route('/run', methods=['POST'])
def trigger_sync():
    """
    Start a sync run in the background.
    
    Headers:
        Authorization: Bearer <trigger secret>
    
    Query params:
        since: Optional lower time bound (ISO 8601 UTC, e.g. 2024-01-01T00:00:00Z)
    
    Returns:
        JSON with job name and execution id
    """
    state = _state()
    settings = state['settings']
    
    if not _authorized(settings.trigger_secret):
        logger.warning(
            f"Unauthorized request attempt: source_ip={request.remote_addr} "
            f"has_auth_header={bool(request.headers.get('Authorization'))}"
        )
        return jsonify({'error': 'Unauthorized'}), 401
    
    invalid = _invalid_deployment_settings(settings)
    if invalid:
        logger.error(f"Deployment settings failed validation: {', '.join(invalid)}")
        return jsonify({'error': 'Server misconfiguration'}), 500
    
    since = request.args.get('since', '')
    if since and not is_valid_iso_utc(since):
        logger.warning(f"Invalid 'since' parameter format: since={since!r} source_ip={request.remote_addr}")
        return jsonify({
            'error': "Invalid 'since' parameter",
            'message': 'Must be ISO 8601 UTC datetime (e.g., 2024-01-01T00:00:00Z)'
        }), 400
    
    job = settings.job_name
    execution_id = f"{job}-{uuid4().hex[:12]}"
    
    logger.info(f"Triggering job: job={job} project={settings.project} since={since or 'default'}")
    
    try:
        state['scheduler'].add_job(
            run_triggered_sync,
            id=execution_id,
            name=job,
            kwargs={
                'since': since or None,
                'execution_id': execution_id,
                'settings': settings,
            },
        )
    except Exception as e:
        logger.error(f"Failed to trigger job {job}: {e}")
        return jsonify({'error': 'Failed to trigger job'}), 500
    
    logger.info(f"Job triggered successfully: job={job} execution_id={execution_id}")
    
    return jsonify({
        'status': 'started',
        'job': job,
        'executionId': execution_id
    })


@sync_bp.route('/status', methods=['GET'])
def get_sync_status():
    """
    Get status of recent sync runs.
    
    Query params:
        limit: Number of runs to return (default 10)
    """
    try:
        limit = int(request.args.get('limit', 10))
        
        with _state()['warehouse']().session_scope() as session:
            runs = session.query(SyncRun).order_by(
                SyncRun.started_at.desc()
            ).limit(limit).all()
            result = [run.to_dict() for run in runs]
        
        return jsonify({
            'success': True,
            'runs': result
        })
    
    except (ValueError, SQLAlchemyError) as e:
        logger.error(f"Failed to get sync status: {e}")
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@sync_bp.route('/status/<execution_id>', methods=['GET'])
def get_sync_run(execution_id: str):
    """Get details of the run started with ``execution_id``."""
    try:
        with _state()['warehouse']().session_scope() as session:
            run = session.query(SyncRun).filter(
                SyncRun.execution_id == execution_id
            ).order_by(SyncRun.started_at.desc()).first()
            
            if not run:
                return jsonify({
                    'success': False,
                    'error': 'Run not found'
                }), 404
            
            return jsonify({
                'success': True,
                'run': run.to_dict()
            })
    
    except SQLAlchemyError as e:
        logger.error(f"Failed to get sync run {execution_id}: {e}")
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500
