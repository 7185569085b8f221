from flask import current_app
from sqlalchemy.exc import IntegrityError

from typeduel import db
from typeduel.errors import RoomFull, Unauthenticated, UserNotFound
from typeduel.models import Room, Player, User


def load_user(user_id) -> User:
    if user_id is None:
        raise Unauthenticated()
    user = db.session.get(User, user_id)
    if not user:
        raise UserNotFound()
    return user


def lock_room(room_id):
    """Load a room with a row lock so concurrent writers to it queue up."""
    return Room.query.filter_by(id=room_id).with_for_update().first()


def find_player(user_id, room_id):
    return Player.query.filter_by(user_id=user_id, room_id=room_id).first()


def room_players(room_id):
    return Player.query.filter_by(room_id=room_id).order_by(Player.id).all()


def room_capacity() -> int:
    return int(current_app.config.get('ROOM_CAPACITY', 5))


def min_players() -> int:
    return int(current_app.config.get('MIN_PLAYERS', 2))


def seat_player(room: Room, user: User, is_host: bool = False) -> Player:
    """Add ``user`` to ``room``, reusing their seat if they already have one.

    Raises ``RoomFull`` when the room is at capacity.
    """
    existing = find_player(user.id, room.id)
    if existing:
        return existing
    if Player.query.filter_by(room_id=room.id).count() >= room_capacity():
        raise RoomFull()
    player = Player(
        room_id=room.id,
        user_id=user.id,
        name=user.display_name,
        progress='',
        is_ready=False,
        is_host=is_host,
    )
    db.session.add(player)
    try:
        db.session.flush()
    except IntegrityError:
        # Another request seated this user first; the unique (user, room) key held
        db.session.rollback()
        existing = find_player(user.id, room.id)
        if existing is None:
            raise
        return existing
    return player
