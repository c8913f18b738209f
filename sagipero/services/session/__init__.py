"""Session/Lifecycle Controller and the presentation bridge.

Components:
- controller.py: SessionController, owns adapters for the tracked record
- http_handler.py: Flask app serving the snapshot and local actions
"""

from .controller import ActionResult, Session, SessionController

__all__ = [
    "ActionResult",
    "Session",
    "SessionController",
]
