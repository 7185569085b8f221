"""Host-approved entry into public rooms.

A request starts ``pending`` and ends ``accepted`` or ``rejected``; handled
requests are never reopened. The requester's client polls the status and
sets ``redirected`` once it has navigated into the room.
"""
from flask import current_app
from sqlalchemy.exc import IntegrityError

from typeduel import db
from typeduel.errors import (
    AlreadyPlayer, DuplicateRequest, InvalidRequest, NotHost, PrivateRoomRequiresCode,
    RequestAlreadyHandled, RequestNotFound, RoomNotFound, Unauthorized,
)
from typeduel.models import JoinRequest, now_ms
from typeduel.services.rooms.common import find_player, load_user, lock_room, seat_player
from typeduel.services.session import atomic

ACTIONS = {'accept': 'accepted', 'reject': 'rejected'}


def pending_requests(room_id):
    return (JoinRequest.query
            .filter_by(room_id=room_id, status='pending')
            .order_by(JoinRequest.created_at, JoinRequest.id)
            .all())


def request_to_join_room(user_id, room_id) -> dict:
    with atomic():
        user = load_user(user_id)
        room = lock_room(room_id)
        if not room:
            raise RoomNotFound()
        if room.room_type != 'public':
            raise PrivateRoomRequiresCode()
        if find_player(user.id, room.id):
            raise AlreadyPlayer()
        if JoinRequest.query.filter_by(room_id=room.id, requester_id=user.id, status='pending').first():
            raise DuplicateRequest()
        join_request = JoinRequest(
            room_id=room.id,
            requester_id=user.id,
            requester_name=user.display_name,
            status='pending',
            created_at=now_ms(),
        )
        db.session.add(join_request)
        try:
            db.session.flush()
        except IntegrityError:
            raise DuplicateRequest()
    current_app.logger.info(f"[join-request] room={room_id} requester={user_id}")
    return {'success': True}


def handle_join_request(user_id, request_id, action: str) -> dict:
    if action not in ACTIONS:
        raise InvalidRequest(f'Unknown action: {action}')
    with atomic():
        join_request = JoinRequest.query.filter_by(id=request_id).with_for_update().first()
        if not join_request:
            raise RequestNotFound()
        room = lock_room(join_request.room_id)
        if not room:
            raise RoomNotFound()
        if room.host_id != user_id:
            raise NotHost()
        if join_request.status != 'pending':
            raise RequestAlreadyHandled()

        if action == 'accept':
            requester = load_user(join_request.requester_id)
            # The room may have filled up since the request was made
            seat_player(room, requester)
        join_request.status = ACTIONS[action]
        room_id = room.id
    current_app.logger.info(f"[join-request] request={request_id} room={room_id} {ACTIONS[action]}")
    return {'success': True, 'room_id': room_id}


def get_user_join_request_status(user_id, room_id):
    join_request = (JoinRequest.query
                    .filter_by(room_id=room_id, requester_id=user_id)
                    .order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc())
                    .first())
    return join_request.to_dict() if join_request else None


def mark_request_redirected(user_id, request_id) -> dict:
    with atomic():
        join_request = JoinRequest.query.filter_by(id=request_id).with_for_update().first()
        if not join_request:
            raise RequestNotFound()
        if join_request.requester_id != user_id:
            raise Unauthorized('Only the requester can update this request')
        if join_request.status != 'accepted':
            raise InvalidRequest('Only accepted requests can be marked as redirected')
        join_request.redirected = True
        return {'success': True, 'room_id': join_request.room_id}
