"""Presentation bridge HTTP handler.

Exposes the read-only snapshot of the tracked emergency and the local
actions to a presentation collaborator. The controller runs on its own
asyncio event loop; handlers here run on Flask's threads and hand actions
over with run_action_threadsafe().
"""
import logging
import os
from typing import Optional

from flask import Flask, jsonify

from sagipero.shared.models import LocalAction
from sagipero.shared.utils import configure_log_salt
from .controller import SessionController

logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Configure identifier redaction salt
log_salt = os.getenv("LOG_HASH_SALT", "default_dev_salt_change_in_production_32chars")
configure_log_salt(log_salt)

ACTION_TIMEOUT_SECONDS = float(os.getenv("ACTION_TIMEOUT_SECONDS", "30"))

session_controller: Optional[SessionController] = None


def configure_controller(controller: Optional[SessionController]) -> None:
    """Bind the running controller the endpoints read from."""
    global session_controller
    session_controller = controller


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "sagipero-session",
    }), 200


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check: a controller with an active session."""
    if session_controller is None or session_controller.session is None:
        return jsonify({"status": "not_ready"}), 503
    return jsonify({"status": "ready"}), 200


@app.route("/snapshot", methods=["GET"])
def snapshot():
    """Read-only view of the tracked emergency.

    Response:
        {
            "emergency_id": "em_123",
            "status": "ACCEPTED",
            "is_terminal": false,
            "responder_location": {"lat": 14.6, "lng": 121.0},
            "timeline": [...]
        }
    """
    if session_controller is None or session_controller.session is None:
        return jsonify({"error": "No active session"}), 503
    return jsonify(session_controller.snapshot().to_dict()), 200


@app.route("/actions/<action_name>", methods=["POST"])
def run_action(action_name: str):
    """Run accept / arrive / resolve / mark-fraud on the tracked emergency."""
    try:
        action = LocalAction(action_name)
    except ValueError:
        return jsonify({"error": f"Unknown action: {action_name}"}), 404

    if session_controller is None or session_controller.session is None:
        return jsonify({"error": "No active session"}), 503

    try:
        result = session_controller.run_action_threadsafe(
            action, timeout=ACTION_TIMEOUT_SECONDS,
        )
    except Exception as e:
        logger.error(
            "ACTION_HTTP_ERROR",
            extra={"action": action.value, "error": str(e), "error_type": type(e).__name__}
        )
        return jsonify({"error": "Failed to run action"}), 500

    logger.info(
        "ACTION_HTTP_COMPLETED",
        extra={"action": action.value, "success": result.success}
    )
    return jsonify(result.to_dict()), 200 if result.success else 409


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8003"))
    app.run(host="0.0.0.0", port=port)
