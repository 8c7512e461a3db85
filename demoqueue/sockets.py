"""Socket.IO event handlers: live queue updates for the dashboard and curator page."""

from flask_socketio import emit, join_room, leave_room

from .core import socketio, get_open_session
from .core import _require_curator, _serialize_panel_state, _serialize_queue_state


@socketio.on("connect")
def handle_connect():
    # Everyone sees the public queue.
    join_room("public")


@socketio.on("enter_panel")
def handle_enter_panel():
    # Curators additionally get panel_state on every queue change.
    if not _require_curator():
        return
    join_room("panel")
    emit("panel_state", _serialize_panel_state(get_open_session()))


@socketio.on("leave_panel")
def handle_leave_panel():
    leave_room("panel")


@socketio.on("request_queue_state")
def handle_request_queue_state():
    emit("queue_state", _serialize_queue_state(get_open_session()))
