from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from typeduel import socketio
from typeduel.auth import current_user_id
from typeduel.services.rooms import controller
from typing import Dict, Any


# socket id -> {'room_id': .., 'user_id': ..} for sockets watching a room
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _channel(room_id) -> str:
    return f"room:{room_id}"


def _depart(room_id, user_id) -> None:
    """Best-effort seat release for a socket that went away.

    The client may already have left over HTTP; ``leave_room`` is a no-op
    for a user without a seat.
    """
    if user_id is None:
        return
    try:
        controller.leave_room(user_id, room_id)
    except Exception:
        current_app.logger.exception(f"[ws-leave-failed] room={room_id} user={user_id}")
        return
    socketio.emit('state_update', {'room_id': room_id}, to=_channel(room_id), namespace='/ws')


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        return
    current_app.logger.info(f"[ws-disconnect] room={ctx['room_id']} user={ctx.get('user_id')}")
    _depart(ctx['room_id'], ctx.get('user_id'))


def handle_join_room(data):
    room_id = (data or {}).get('room_id')
    if room_id is None:
        emit('error', {'message': 'room_id is required'})
        return
    sid = _get_sid()
    previous = _sid_to_ctx.get(sid)
    if previous and previous['room_id'] != room_id:
        # One watched room per socket; switching rooms gives up the old seat
        leave_room(_channel(previous['room_id']))
        _depart(previous['room_id'], previous.get('user_id'))
    channel = _channel(room_id)
    join_room(channel)
    _sid_to_ctx[sid] = {'room_id': room_id, 'user_id': current_user_id()}
    emit('joined', {'room': channel})


def handle_leave_room(data):
    room_id = (data or {}).get('room_id')
    if room_id is None:
        emit('error', {'message': 'room_id is required'})
        return
    channel = _channel(room_id)
    leave_room(channel)
    emit('left', {'room': channel})
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx and ctx.get('room_id') == room_id:
        _depart(room_id, ctx.get('user_id'))


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('join_room', handle_join_room, namespace=namespace)
        socketio.on_event('leave_room', handle_leave_room, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
