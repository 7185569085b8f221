from flask import Blueprint, jsonify, request
from flask_login import login_required

from typeduel import socketio
from typeduel.auth import require_user_id
from typeduel.errors import InvalidRequest
from typeduel.services.rooms import controller, history, join_requests


rooms = Blueprint('rooms', __name__)


def _notify(room_id) -> None:
    socketio.emit('state_update', {'room_id': room_id}, to=f"room:{room_id}", namespace='/ws')


def _optional_int(data, key):
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f'{key} must be a number')


@rooms.route('/create', methods=['POST'])
@login_required
def create_room():
    data = request.get_json(silent=True) or {}
    result = controller.create_room(
        require_user_id(),
        room_type=data.get('room_type') or 'private',
        room_name=data.get('room_name'),
    )
    return jsonify(result), 201


@rooms.route('/join', methods=['POST'])
@login_required
def join_room():
    data = request.get_json(silent=True) or {}
    room_code = data.get('room_code')
    if not room_code:
        return jsonify({'error': 'Room code is required'}), 400
    result = controller.join_room(require_user_id(), room_code)
    _notify(result['room_id'])
    return jsonify(result), 200


@rooms.route('/public', methods=['GET'])
@login_required
def list_public_rooms():
    return jsonify(controller.list_public_rooms())


@rooms.route('/current', methods=['GET'])
@login_required
def get_current_room():
    return jsonify({'room_id': controller.get_current_room_id(require_user_id())})


@rooms.route('/<int:room_id>/state', methods=['GET'])
@login_required
def get_room_state(room_id):
    return jsonify(controller.get_room_state(require_user_id(), room_id))


@rooms.route('/<int:room_id>/request', methods=['POST'])
@login_required
def request_to_join(room_id):
    result = join_requests.request_to_join_room(require_user_id(), room_id)
    _notify(room_id)
    return jsonify(result), 201


@rooms.route('/<int:room_id>/request', methods=['GET'])
@login_required
def get_join_request_status(room_id):
    return jsonify(join_requests.get_user_join_request_status(require_user_id(), room_id))


@rooms.route('/requests/<int:request_id>/handle', methods=['POST'])
@login_required
def handle_join_request(request_id):
    data = request.get_json(silent=True) or {}
    result = join_requests.handle_join_request(require_user_id(), request_id, data.get('action'))
    _notify(result['room_id'])
    return jsonify(result)


@rooms.route('/requests/<int:request_id>/redirected', methods=['POST'])
@login_required
def mark_redirected(request_id):
    return jsonify(join_requests.mark_request_redirected(require_user_id(), request_id))


@rooms.route('/<int:room_id>/ready', methods=['POST'])
@login_required
def toggle_ready(room_id):
    result = controller.toggle_ready(require_user_id(), room_id)
    _notify(room_id)
    return jsonify(result)


@rooms.route('/<int:room_id>/progress', methods=['POST'])
@login_required
def update_progress(room_id):
    data = request.get_json(silent=True) or {}
    progress = data.get('progress')
    if progress is None:
        return jsonify({'error': 'Progress is required'}), 400
    result = controller.update_progress(
        require_user_id(),
        room_id,
        str(progress),
        phrase=data.get('phrase'),
        wpm=_optional_int(data, 'wpm'),
    )
    _notify(room_id)
    return jsonify(result)


@rooms.route('/<int:room_id>/new-round', methods=['POST'])
@login_required
def start_new_round(room_id):
    controller.start_new_round(require_user_id(), room_id)
    _notify(room_id)
    return jsonify({'success': True})


@rooms.route('/<int:room_id>/leave', methods=['POST'])
@login_required
def leave_room(room_id):
    result = controller.leave_room(require_user_id(), room_id)
    _notify(room_id)
    return jsonify(result)


@rooms.route('/<int:room_id>/complete', methods=['POST'])
@login_required
def complete_game(room_id):
    completed = controller.complete_game(room_id, user_id=require_user_id())
    _notify(room_id)
    return jsonify({'completed': completed})


@rooms.route('/<int:room_id>/active', methods=['POST'])
@login_required
def set_room_active(room_id):
    data = request.get_json(silent=True) or {}
    if 'is_active' not in data:
        return jsonify({'error': 'is_active is required'}), 400
    return jsonify(controller.set_room_active(require_user_id(), room_id, bool(data['is_active'])))


@rooms.route('/<int:room_id>/history', methods=['GET'])
@login_required
def get_game_history(room_id):
    return jsonify(history.get_game_history(room_id))


@rooms.route('/<int:room_id>/chat', methods=['GET'])
@login_required
def get_messages(room_id):
    return jsonify(history.get_messages(room_id))


@rooms.route('/<int:room_id>/chat', methods=['POST'])
@login_required
def send_message(room_id):
    data = request.get_json(silent=True) or {}
    message = history.send_message(
        require_user_id(),
        room_id,
        data.get('content'),
        kind=data.get('kind') or 'text',
    )
    socketio.emit('chat_message', message, to=f"room:{room_id}", namespace='/ws')
    return jsonify(message), 201
