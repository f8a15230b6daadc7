"""
Flask Routes for Newsdesk

Includes:
- Health check endpoint
- Social-posting integration (poll pending posts, report outcomes)
- Automation queue inspection and retry
- Manual moderation, AI rewrite and automation start for ingested items
- System notifications
"""

import logging
import threading
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from newsdesk.models import AutomationStatus
from newsdesk.services.automation import (
    AutomationNotFoundError, AutomationPreconditionError, InvalidTransitionError,
    get_pending_social_posts, get_queue, mark_social_failed, mark_social_posted, mark_social_posting,
    process_queue, retry_automation, start_automation,
)
from newsdesk.services.moderation import approve_item, reject_item, rewrite_item, rewrite_items
from newsdesk.services.notifications import (
    get_notifications, get_unread_count, mark_all_as_read, mark_as_read,
)

logger = logging.getLogger(__name__)

# Create blueprint
main = Blueprint('main', __name__)

MAX_PER_PAGE = 100


@main.errorhandler(AutomationNotFoundError)
def handle_not_found(error):
    return jsonify({'error': str(error)}), 404


@main.errorhandler(AutomationPreconditionError)
@main.errorhandler(InvalidTransitionError)
def handle_conflict(error):
    return jsonify({'error': str(error)}), 409


@main.errorhandler(ValueError)
def handle_bad_request(error):
    return jsonify({'error': str(error)}), 400


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def _process_in_background(queue_id: str):
    """Run the pipeline stages off the request thread."""
    def worker():
        try:
            process_queue(queue_id)
        except Exception as e:
            logger.error(f"Background automation failed for {queue_id}: {e}")

    threading.Thread(target=worker, name=f"automation-{queue_id}", daemon=True).start()


@main.route('/health')
def health_check():
    """Health check endpoint."""
    return {'status': 'healthy', 'timestamp': datetime.now(timezone.utc).isoformat()}


# ============================================================================
# Social-posting integration
# ============================================================================

@main.route('/automation/social/pending')
def social_pending():
    """Posts whose scheduled time has arrived (polled by the n8n workflow)."""
    limit = min(max(_int_arg('limit', 10), 1), MAX_PER_PAGE)
    return jsonify({'data': get_pending_social_posts(limit)})


@main.route('/automation/<queue_id>/social/posting', methods=['POST'])
def social_posting(queue_id: str):
    return jsonify({'success': True, 'data': mark_social_posting(queue_id)})


@main.route('/automation/<queue_id>/social/posted', methods=['POST'])
def social_posted(queue_id: str):
    payload = request.get_json(silent=True) or {}
    post_id = payload.get('post_id') or payload.get('postId')
    if not post_id:
        return jsonify({'error': 'post_id is required'}), 400

    return jsonify({'success': True, 'data': mark_social_posted(queue_id, str(post_id))})


@main.route('/automation/<queue_id>/social/failed', methods=['POST'])
def social_failed(queue_id: str):
    payload = request.get_json(silent=True) or {}
    error_message = payload.get('error') or payload.get('error_message') or 'Unknown social posting error'

    status = mark_social_failed(queue_id, str(error_message))
    return jsonify({'success': True, 'status': status.value})


# ============================================================================
# Automation queue
# ============================================================================

@main.route('/automation/queue')
def automation_queue():
    per_page = min(max(_int_arg('per_page', 20), 1), MAX_PER_PAGE)
    return jsonify(get_queue(
        status=request.args.get('status') or None,
        page=_int_arg('page', 1),
        per_page=per_page,
    ))


@main.route('/automation/<queue_id>/retry', methods=['POST'])
def automation_retry(queue_id: str):
    status = retry_automation(queue_id, process_now=False)
    if status == AutomationStatus.PENDING:
        _process_in_background(queue_id)
    return jsonify({'success': True, 'status': status.value})


# ============================================================================
# Ingested item moderation
# ============================================================================

@main.route('/rss/articles/<item_id>/automate', methods=['POST'])
def automate_item(item_id: str):
    queue_id = start_automation(item_id, process_now=False)
    _process_in_background(queue_id)
    return jsonify({'success': True, 'queue_id': queue_id}), 201


@main.route('/rss/articles/<item_id>/approve', methods=['POST'])
def approve_ingested_item(item_id: str):
    payload = request.get_json(silent=True) or {}
    result = approve_item(item_id, automate=bool(payload.get('automate')), process_now=False)
    if result is None:
        return jsonify({'error': 'Item not found'}), 404
    if result['queue_id']:
        _process_in_background(result['queue_id'])
    return jsonify({'success': True, **result})


@main.route('/rss/articles/<item_id>/reject', methods=['POST'])
def reject_ingested_item(item_id: str):
    if not reject_item(item_id):
        return jsonify({'error': 'Item not found'}), 404
    return jsonify({'success': True})


@main.route('/rss/articles/<item_id>/rewrite', methods=['POST'])
def rewrite_ingested_item(item_id: str):
    result = rewrite_item(item_id)
    if result is None:
        return jsonify({'error': 'Item not found'}), 404
    if not result['success']:
        return jsonify({'error': result['error']}), 503
    return jsonify({'success': True, 'data': result})


@main.route('/rss/articles/bulk-rewrite', methods=['POST'])
def bulk_rewrite_items():
    payload = request.get_json(silent=True) or {}
    ids = payload.get('ids')
    if not isinstance(ids, list):
        return jsonify({'error': 'ids must be a list'}), 400
    return jsonify({'success': True, 'data': rewrite_items(ids)})


# ============================================================================
# Notifications
# ============================================================================

@main.route('/notifications')
def list_notifications():
    per_page = min(max(_int_arg('per_page', 20), 1), MAX_PER_PAGE)
    unread_only = request.args.get('unread_only', '').lower() in ('1', 'true', 'yes')

    result = get_notifications(page=_int_arg('page', 1), per_page=per_page, unread_only=unread_only)
    result['meta']['unread_count'] = get_unread_count()
    return jsonify(result)


@main.route('/notifications/<notification_id>/read', methods=['POST'])
def read_notification(notification_id: str):
    if not mark_as_read(notification_id):
        return jsonify({'error': 'Notification not found'}), 404
    return jsonify({'success': True})


@main.route('/notifications/read-all', methods=['POST'])
def read_all_notifications():
    return jsonify({'success': True, 'updated': mark_all_as_read()})
