"""Stable import surface for route and socket modules.

Re-exports public symbols from:
- extensions.py (app/db/socketio, config/constants)
- models.py (SQLAlchemy models)
- state.py (request helpers, session/XP bookkeeping, broadcast helpers)
"""

from .extensions import *  # noqa: F401,F403
from .models import *  # noqa: F401,F403
from .state import *  # noqa: F401,F403

# Star-import does not pull names that start with '_'.
from .state import (  # noqa: F401
    _broadcast_queue_state,
    _require_curator,
    _require_tester,
    _serialize_queue_state,
    _serialize_panel_state,
    _serialize_submission,
    _submission_display_name,
)
