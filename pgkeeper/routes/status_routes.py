"""
Status routes - last cycle summary and scheduler state.
"""

from flask import Blueprint, jsonify

from pgkeeper.cycle import get_last_cycle
from pgkeeper.scheduler import get_scheduled_jobs, is_scheduler_running


bp = Blueprint('status', __name__, url_prefix='/api')


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get backup status.

    Returns:
        JSON with:
        - last_cycle: Summary of the most recent cycle, or null
        - scheduler_status: 'running' or 'stopped'
        - scheduled_jobs: Jobs registered with the scheduler
    """
    last_cycle = get_last_cycle()

    return jsonify({
        'last_cycle': last_cycle.to_dict() if last_cycle else None,
        'scheduler_status': 'running' if is_scheduler_running() else 'stopped',
        'scheduled_jobs': get_scheduled_jobs()
    })
