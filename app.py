"""
Annotation Extraction API - batch screenshot annotation pipeline
"""

from flask import Flask, request, jsonify

from config import config
from database import list_batches
from services import (
    BackgroundLoop,
    BatchAlreadyRunning,
    BatchNotFound,
    InvalidTransition,
    build_controller,
    get_batch_analytics,
    get_batch_annotations,
    run_batch_background
)
from utils.validation import parse_batch_id


def create_app(controller=None, background=None):
    """Build the Flask app around a batch controller"""
    app = Flask(__name__)
    controller = controller or build_controller()
    background = background or BackgroundLoop()

    def _batch_id_from(source):
        return parse_batch_id((source or {}).get('batch_id'))

    def _schedule(batch_id, restart):
        try:
            controller.check_can_start(batch_id, restart=restart)
        except BatchNotFound:
            return jsonify({"error": "Batch not found"}), 404
        except (BatchAlreadyRunning, InvalidTransition) as e:
            return jsonify({"error": str(e)}), 409

        run_batch_background(controller, background, batch_id, restart=restart)
        return jsonify({
            "success": True,
            "batch_id": batch_id,
            "status": "extracting"
        }), 202

    # ============================================
    # ROUTES
    # ============================================

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({
            "status": "healthy",
            "version": "1.0",
            "services": {
                "anthropic": bool(config.ANTHROPIC_API_KEY),
                "openai": bool(config.OPENAI_API_KEY),
                "moondream": bool(config.MOONDREAM_API_KEY),
                "supabase": bool(config.SUPABASE_KEY)
            }
        })

    @app.route('/create-batch', methods=['POST'])
    def create_batch():
        """Register a batch and its uploaded screenshot URLs"""
        data = request.get_json(silent=True) or {}
        file_urls = data.get('file_urls') or []

        if not isinstance(file_urls, list) or not file_urls:
            return jsonify({"error": "file_urls required"}), 400

        batch, screenshots = controller.register_batch(
            data.get('batch_name') or 'Batch',
            data.get('analysis_type') or 'default',
            file_urls
        )

        return jsonify({
            "success": True,
            "batch": batch,
            "screenshots": screenshots
        }), 201

    @app.route('/start-batch', methods=['POST'])
    def start_batch():
        """Start extraction for an uploaded batch (runs in the background)"""
        batch_id = _batch_id_from(request.get_json(silent=True))

        if not batch_id:
            return jsonify({"error": "batch_id required"}), 400

        return _schedule(batch_id, restart=False)

    @app.route('/reprocess-batch', methods=['POST'])
    def reprocess_batch():
        """Clear previous results and run extraction again"""
        batch_id = _batch_id_from(request.get_json(silent=True))

        if not batch_id:
            return jsonify({"error": "batch_id required"}), 400

        return _schedule(batch_id, restart=True)

    @app.route('/cancel-batch', methods=['POST'])
    def cancel_batch():
        batch_id = _batch_id_from(request.get_json(silent=True))

        if not batch_id:
            return jsonify({"error": "batch_id required"}), 400

        if not controller.cancel_batch(batch_id):
            return jsonify({"error": "Batch is not running"}), 409

        return jsonify({"success": True, "batch_id": batch_id})

    @app.route('/complete-review', methods=['POST'])
    def complete_review():
        """Mark human review finished"""
        batch_id = _batch_id_from(request.get_json(silent=True))

        if not batch_id:
            return jsonify({"error": "batch_id required"}), 400

        try:
            previous = controller.complete_review(batch_id)
        except BatchNotFound:
            return jsonify({"error": "Batch not found"}), 404
        except InvalidTransition as e:
            return jsonify({"error": str(e)}), 409

        return jsonify({
            "success": True,
            "batch_id": batch_id,
            "previous_status": previous,
            "status": "done"
        })

    @app.route('/batches', methods=['GET'])
    def batches():
        """Most recent batches"""
        limit = request.args.get('limit', default=50, type=int)
        return jsonify({"batches": list_batches(controller.store, max(1, min(limit, 200)))})

    @app.route('/batch-status', methods=['GET'])
    def batch_status():
        """Get current batch status"""
        batch_id = _batch_id_from(request.args)

        if not batch_id:
            return jsonify({"error": "batch_id required"}), 400

        try:
            return jsonify(controller.get_batch_status(batch_id))
        except BatchNotFound:
            return jsonify({"error": "Batch not found"}), 404

    @app.route('/batch-annotations', methods=['GET'])
    def batch_annotations():
        batch_id = _batch_id_from(request.args)

        if not batch_id:
            return jsonify({"error": "batch_id required"}), 400

        return jsonify({
            "batch_id": batch_id,
            "screenshots": get_batch_annotations(controller.store, batch_id)
        })

    @app.route('/batch-analytics', methods=['GET'])
    def batch_analytics():
        batch_id = _batch_id_from(request.args)

        if not batch_id:
            return jsonify({"error": "batch_id required"}), 400

        analytics = get_batch_analytics(controller.store, batch_id)
        if analytics is None:
            return jsonify({"error": "Batch not found"}), 404

        return jsonify(analytics)

    return app


# WSGI entry point, e.g. gunicorn app:app
app = create_app()


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.PORT, debug=config.DEBUG)
