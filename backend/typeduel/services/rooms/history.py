"""Finished-round history and the room chat feed.

Both are append-only per room and only ever removed together with the room.
"""
import json

from typeduel import db
from typeduel.errors import InvalidRequest, PlayerNotFound
from typeduel.models import ChatMessage, GameHistory, JoinRequest, now_ms
from typeduel.services.rooms.common import find_player, load_user
from typeduel.services.session import atomic

CHAT_KINDS = ('text', 'emoji', 'sticker')
MAX_CHAT_LENGTH = 500


def record_history(room_id, winner_id, players, ended_at) -> GameHistory:
    entry = GameHistory(
        room_id=room_id,
        ended_at=ended_at,
        winner_id=winner_id,
        players_json=json.dumps([p.snapshot() for p in players]),
    )
    db.session.add(entry)
    return entry


def get_game_history(room_id):
    entries = GameHistory.query.filter_by(room_id=room_id).order_by(GameHistory.ended_at, GameHistory.id).all()
    return [e.to_dict() for e in entries]


def send_message(user_id, room_id, content, kind='text'):
    if kind not in CHAT_KINDS:
        raise InvalidRequest(f'Unknown message kind: {kind}')
    content = (content or '').strip()
    if not content:
        raise InvalidRequest('Message content is required')
    if len(content) > MAX_CHAT_LENGTH:
        raise InvalidRequest(f'Messages are limited to {MAX_CHAT_LENGTH} characters')
    with atomic():
        user = load_user(user_id)
        if not find_player(user.id, room_id):
            raise PlayerNotFound()
        message = ChatMessage(
            room_id=room_id,
            user_id=user.id,
            user_name=user.display_name,
            kind=kind,
            content=content,
            sent_at=now_ms(),
        )
        db.session.add(message)
    return message.to_dict()


def get_messages(room_id):
    messages = ChatMessage.query.filter_by(room_id=room_id).order_by(ChatMessage.sent_at, ChatMessage.id).all()
    return [m.to_dict() for m in messages]


def purge_room_records(room_id) -> None:
    """Delete everything hanging off a room that is about to be removed."""
    JoinRequest.query.filter_by(room_id=room_id).delete()
    ChatMessage.query.filter_by(room_id=room_id).delete()
    GameHistory.query.filter_by(room_id=room_id).delete()
