#!/usr/bin/env python3
"""
Product Image Linker - Admin API
JSON endpoints to run scans, follow their progress and review image candidates
"""

import os
import logging
import threading
from datetime import datetime
from typing import Optional

from flask import Flask, jsonify, request, send_file

from database import LinkDatabase
from reconciler import ImageReconciler
from review import CandidateReviewer
from sku_linker.config import load_config, setup_logging
from sku_linker.errors import (
    CandidateNotFound,
    DuplicateLinkSkip,
    InvalidCandidateState,
    LinkerError,
)
from sku_linker.models import CANDIDATE_PENDING, CANDIDATE_STATUSES
from sku_linker.progress import ProgressChannel
from sku_linker.storage import ImageStore, create_store

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ('csv', 'xlsx')


def _parse_int(value: Optional[str], default: int, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except (TypeError, ValueError):
        parsed = default
    return max(minimum, min(parsed, maximum))


def create_app(config: dict = None, db: LinkDatabase = None, store: ImageStore = None,
               channel: ProgressChannel = None) -> Flask:
    """
    Build the admin API around one database, image store and progress channel.

    Args:
        config: Configuration dictionary (loaded from config.yaml if not given)
        db: Link database (opened from database.path if not given)
        store: Image store (built from the storage section if not given)
        channel: Progress channel shared with background scans

    Returns:
        Configured Flask application
    """
    config = config or load_config()
    db = db or LinkDatabase(config['database']['path'])
    store = store or create_store(config['storage'])
    channel = channel or ProgressChannel()

    reconciler = ImageReconciler(config, db, store, channel)
    reviewer = CandidateReviewer(db)

    app = Flask(__name__)
    app.config['EXPORT_FOLDER'] = 'exports'

    # Only one scan runs at a time
    scan_state = {'session_id': None, 'thread': None}
    scan_lock = threading.Lock()

    app.extensions['sku_linker'] = {
        'db': db,
        'channel': channel,
        'reconciler': reconciler,
        'reviewer': reviewer,
        'scan_state': scan_state,
    }

    @app.errorhandler(LinkerError)
    def handle_linker_error(error):
        if isinstance(error, CandidateNotFound):
            return jsonify({'error': str(error)}), 404
        if isinstance(error, (InvalidCandidateState, DuplicateLinkSkip)):
            return jsonify({'error': str(error)}), 409
        logger.error(f"Request failed: {str(error)}")
        return jsonify({'error': str(error)}), 500

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Internal server error'}), 500

    @app.route('/api/scan', methods=['POST'])
    def start_scan():
        """Start a reconciliation scan in the background"""
        with scan_lock:
            current = scan_state['session_id']
            if current and channel.is_active(current):
                logger.warning("Scan requested while another scan is running")
                return jsonify({'error': 'A scan is already running', 'session_id': current}), 409

            session_id = channel.open_session()
            scan_state['session_id'] = session_id

        def run_scan():
            try:
                reconciler.run_scan(session_id)
            except Exception as e:
                logger.error(f"Scan thread error: {str(e)}", exc_info=True)
            finally:
                logger.info(f"Scan thread for session {session_id} finished")

        thread = threading.Thread(target=run_scan)
        thread.daemon = True
        scan_state['thread'] = thread
        thread.start()

        return jsonify({'success': True, 'session_id': session_id, 'message': 'Scan started'}), 202

    @app.route('/api/progress/<session_id>')
    def get_progress(session_id):
        snapshot = channel.latest(session_id)
        if snapshot is None:
            return jsonify({'error': f'Unknown scan session {session_id}'}), 404

        data = snapshot.to_dict()
        data['session_id'] = session_id
        return jsonify(data)

    @app.route('/api/scan/<session_id>/stop', methods=['POST'])
    def stop_scan(session_id):
        if not channel.request_stop(session_id):
            return jsonify({'error': 'No scan is currently active for this session'}), 400

        snapshot = channel.latest(session_id)
        return jsonify({
            'success': True,
            'message': 'Stop requested, the scan ends after the current batch',
            'processed': snapshot.processed if snapshot else 0
        })

    @app.route('/api/reports/latest')
    def latest_report():
        report = db.get_latest_scan_report()
        if report is None:
            return jsonify({'error': 'No scan has been run yet'}), 404
        return jsonify(report.to_dict())

    @app.route('/api/candidates')
    def list_candidates():
        status = request.args.get('status', CANDIDATE_PENDING)
        if status != 'all' and status not in CANDIDATE_STATUSES:
            return jsonify({'error': f'Unknown status filter: {status}'}), 400

        candidates = reviewer.list_candidates(
            status=status,
            product_id=request.args.get('product_id') or None,
            search=request.args.get('search') or None,
            limit=_parse_int(request.args.get('limit'), default=100, minimum=1, maximum=1000),
        )
        return jsonify({
            'candidates': [candidate.to_dict() for candidate in candidates],
            'count': len(candidates)
        })

    @app.route('/api/candidates/<int:candidate_id>/promote', methods=['POST'])
    def promote_candidate(candidate_id):
        link_id = reviewer.promote(candidate_id)
        return jsonify({'success': True, 'message': 'Candidate promoted', 'link_id': link_id})

    @app.route('/api/candidates/<int:candidate_id>/reject', methods=['POST'])
    def reject_candidate(candidate_id):
        data = request.get_json(silent=True) or {}
        reviewer.reject(candidate_id, data.get('reason'))
        return jsonify({'success': True, 'message': 'Candidate rejected'})

    @app.route('/api/candidates/auto-promote', methods=['POST'])
    def auto_promote():
        data = request.get_json(silent=True) or {}
        default_threshold = config.get('review', {}).get('auto_promote_threshold', 70)
        try:
            min_confidence = int(data.get('min_confidence', default_threshold))
        except (TypeError, ValueError):
            return jsonify({'error': 'min_confidence must be an integer'}), 400

        results = reviewer.auto_promote(min_confidence)
        return jsonify({'success': True, 'min_confidence': min_confidence, **results})

    @app.route('/api/stats')
    def get_stats():
        return jsonify({'stats': db.get_statistics()})

    @app.route('/api/export')
    def export_candidates():
        """Export candidates as a CSV or Excel download"""
        status_filter = request.args.get('status', 'all')
        file_format = request.args.get('format', 'xlsx').lower()
        if file_format not in EXPORT_FORMATS:
            return jsonify({'error': f'Unsupported export format: {file_format}'}), 400
        if status_filter != 'all' and status_filter not in CANDIDATE_STATUSES:
            return jsonify({'error': f'Unknown status filter: {status_filter}'}), 400

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        status_suffix = f"_{status_filter}" if status_filter != 'all' else ''
        export_dir = app.config['EXPORT_FOLDER']
        os.makedirs(export_dir, exist_ok=True)
        output_file = os.path.abspath(os.path.join(export_dir, f"candidates_{timestamp}{status_suffix}.{file_format}"))

        if not db.export_candidates(output_file, status_filter=status_filter):
            return jsonify({'error': 'Export failed'}), 500

        return send_file(output_file, as_attachment=True)

    return app


if __name__ == '__main__':
    config = load_config()
    setup_logging(config)

    server = config.get('server', {})
    host = server.get('host', '127.0.0.1')
    port = int(server.get('port', 8847))

    app = create_app(config)

    print("\n" + "=" * 60)
    print("PRODUCT IMAGE LINKER - ADMIN API")
    print("=" * 60)
    print(f"Listening on: http://{host}:{port}")
    print("=" * 60 + "\n")

    # Reloader would start a second process with its own scan state
    app.run(debug=bool(server.get('debug', False)), host=host, port=port, use_reloader=False)
