"""Room lifecycle: waiting -> playing -> finished -> waiting.

Each operation is one transaction. The room row is locked before any read
that decides a transition, and the two transitions that must happen once
per round (start and finish) are also compare-and-set updates on
``game_state``, so a second concurrent caller finds nothing to change.
"""
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from typeduel import db
from typeduel.errors import (
    AggregateKeyMismatch, Conflict, InvalidRequest, NotHost, PlayerNotFound, PublicRoomRequiresApproval, RoomNotFound,
)
from typeduel.models import Player, Room, now_ms
from typeduel.services.rooms.common import (
    find_player, load_user, lock_room, min_players, room_players, seat_player,
)
from typeduel.services.rooms.history import purge_room_records, record_history
from typeduel.services.rooms.join_requests import pending_requests
from typeduel.services.rooms.metrics import calculate_accuracy, calculate_wpm
from typeduel.services.rooms.phrases import generate_room_code, pick_phrase
from typeduel.services.scoring.ledger import apply_multiplayer_scores
from typeduel.services.scoring.scheduler import schedule_score_update
from typeduel.services.session import atomic

ROOM_TYPES = ('public', 'private')


def _unused_room_code(rng=None) -> str:
    attempts = int(current_app.config.get('ROOM_CODE_ATTEMPTS', 10))
    for _ in range(max(1, attempts)):
        code = generate_room_code(rng)
        if not Room.query.filter_by(room_code=code).first():
            return code
    current_app.logger.warning(f"[room-code] no free code after {attempts} attempts")
    raise Conflict('Could not allocate a room code, please try again')


def create_room(user_id, room_type: str = 'private', room_name: Optional[str] = None, rng=None) -> dict:
    if room_type not in ROOM_TYPES:
        raise InvalidRequest(f'Unknown room type: {room_type}')
    if room_type == 'public':
        room_name = (room_name or '').strip() or None
    else:
        room_name = None
    with atomic():
        user = load_user(user_id)
        room = Room(
            room_code=_unused_room_code(rng),
            room_type=room_type,
            room_name=room_name,
            host_id=user.id,
            game_state='waiting',
            created_at=now_ms(),
        )
        db.session.add(room)
        db.session.flush()
        seat_player(room, user, is_host=True)
        result = {'room_id': room.id, 'room_code': room.room_code}
    current_app.logger.info(f"[room-create] room={result['room_id']} code={result['room_code']} type={room_type} host={user_id}")
    return result


def join_room(user_id, room_code: str) -> dict:
    code = (room_code or '').strip().upper()
    if not code:
        raise InvalidRequest('Room code is required')
    with atomic():
        user = load_user(user_id)
        room = Room.query.filter_by(room_code=code).with_for_update().first()
        if not room:
            raise RoomNotFound()
        if room.room_type == 'public':
            raise PublicRoomRequiresApproval()
        seat_player(room, user)
        return {'room_id': room.id, 'room_code': room.room_code}


def get_room_state(user_id, room_id) -> dict:
    room = db.session.get(Room, room_id)
    if not room:
        raise RoomNotFound()
    players = room_players(room_id)
    current = next((p for p in players if p.user_id == user_id), None)
    is_host = user_id is not None and room.host_id == user_id
    return {
        'room': room.to_dict(),
        'players': [p.to_dict() for p in players],
        'current_player': current.to_dict() if current else None,
        'join_requests': [r.to_dict() for r in pending_requests(room_id)] if is_host else [],
        'is_current_user_in_room': current is not None,
        'is_host': is_host,
    }


def _start_round(room: Room, players, rng=None) -> bool:
    phrase = pick_phrase(rng)
    started = Room.query.filter_by(id=room.id, game_state='waiting').update({
        'game_state': 'playing',
        'current_phrase': phrase,
        'winner_id': None,
        'is_settled': False,
    })
    if not started:
        return False
    # One shared epoch so completion times are comparable across players
    start_time = now_ms()
    for p in players:
        p.reset_round()
        p.start_time = start_time
    current_app.logger.info(f"[room-start] room={room.id} players={len(players)}")
    return True


def toggle_ready(user_id, room_id, rng=None) -> dict:
    with atomic():
        room = lock_room(room_id)
        player = find_player(user_id, room_id) if room else None
        if not player:
            raise PlayerNotFound()
        player.is_ready = not player.is_ready
        db.session.flush()

        players = room_players(room_id)
        started = False
        if (room.game_state == 'waiting'
                and len(players) >= min_players()
                and all(p.is_ready for p in players)):
            started = _start_round(room, players, rng)
        return {'is_ready': player.is_ready, 'started': started}


def _freeze_unfinished(players, winner: Player, phrase: str, finished_at: int) -> None:
    for p in players:
        if p.id == winner.id or p.completion_time is not None:
            continue
        p.wpm = calculate_wpm(p.progress, p.start_time, finished_at)
        p.accuracy = calculate_accuracy(p.progress, phrase)
        p.completion_time = finished_at


def update_progress(user_id, room_id, progress: str, phrase: Optional[str] = None,
                    wpm: Optional[int] = None) -> dict:
    progress = progress or ''
    with atomic():
        room = lock_room(room_id)
        if not room or room.game_state != 'playing':
            # Late keystrokes after the round ended are dropped
            return {'finished': False}
        player = find_player(user_id, room_id)
        if not player:
            raise PlayerNotFound()

        now = now_ms()
        target = room.current_phrase
        player.progress = progress
        player.accuracy = calculate_accuracy(progress, phrase if phrase is not None else target)
        player.wpm = wpm if wpm is not None else calculate_wpm(progress, player.start_time, now)

        if not target or progress != target:
            return {'finished': False}

        player.completion_time = now
        players = room_players(room_id)
        _freeze_unfinished(players, player, target, now)
        won = Room.query.filter_by(id=room.id, game_state='playing').update({
            'game_state': 'finished',
            'winner_id': user_id,
        })
        if not won:
            db.session.rollback()
            return {'finished': False}

        record_history(room.id, user_id, players, now)
        if current_app.config.get('SETTLE_ON_WIN', True):
            # A failed settlement must not undo the finish itself
            try:
                with db.session.begin_nested():
                    apply_multiplayer_scores(user_id, [p.user_id for p in players])
                room.is_settled = True
            except (AggregateKeyMismatch, SQLAlchemyError):
                current_app.logger.exception(f"[room-settle-failed] room={room.id} winner={user_id}")
        current_app.logger.info(f"[room-finish] room={room.id} winner={user_id} players={len(players)}")
        return {'finished': True, 'winner_id': user_id}


def start_new_round(user_id, room_id) -> None:
    with atomic():
        room = lock_room(room_id)
        if not room:
            raise RoomNotFound()
        room.game_state = 'waiting'
        room.current_phrase = None
        room.winner_id = None
        room.is_settled = False
        for p in room_players(room_id):
            p.reset_round()
            p.is_ready = False
            p.start_time = None
    current_app.logger.info(f"[room-reset] room={room_id} by={user_id}")


def _delete_room(room: Room) -> None:
    purge_room_records(room.id)
    db.session.delete(room)


def leave_room(user_id, room_id) -> dict:
    with atomic():
        room = lock_room(room_id)
        player = find_player(user_id, room_id) if room else None
        if not player:
            return {'left': False}
        was_host = player.is_host or room.host_id == user_id
        db.session.delete(player)
        db.session.flush()

        remaining = room_players(room_id)
        if not remaining:
            _delete_room(room)
            current_app.logger.info(f"[room-delete] room={room_id} last player left")
            return {'left': True, 'room_deleted': True}

        if was_host:
            # Earliest remaining seat inherits the room
            successor = remaining[0]
            successor.is_host = True
            room.host_id = successor.user_id
            current_app.logger.info(f"[room-host] room={room_id} host {user_id} -> {successor.user_id}")
        return {'left': True, 'room_deleted': False, 'host_id': room.host_id}


def complete_game(room_id, user_id=None, app=None) -> bool:
    """Finish a round from outside the progress path.

    When ``user_id`` is given (player-issued completion) it must be the host.
    Scores are credited only when a winner is recorded and the round has not
    been settled already; the credits run as deferred transactions.
    """
    app = app or current_app._get_current_object()
    pending = []
    with atomic():
        room = lock_room(room_id)
        if not room:
            return False
        if user_id is not None and room.host_id != user_id:
            raise NotHost()
        if room.game_state != 'playing':
            return False
        room.game_state = 'finished'
        players = room_players(room_id)
        if room.winner_id and not room.is_settled:
            room.is_settled = True
            pending.append((room.winner_id, 'win'))
            runner_up = next((p for p in players if p.user_id != room.winner_id), None)
            if runner_up:
                pending.append((runner_up.user_id, 'lose'))
        player_count = len(players)
    app.logger.info(f"[room-complete] room={room_id} deferred_updates={len(pending)}")
    for player_id, outcome in pending:
        schedule_score_update(app, player_id, outcome, player_count)
    return True


def set_room_active(user_id, room_id, is_active: bool) -> dict:
    with atomic():
        room = lock_room(room_id)
        if not room:
            raise RoomNotFound()
        if room.host_id != user_id:
            raise NotHost()
        room.is_active = bool(is_active)
        return {'room_id': room.id, 'is_active': room.is_active}


def list_public_rooms():
    rooms = (Room.query
             .filter_by(room_type='public', is_active=True, game_state='waiting')
             .order_by(Room.created_at.desc(), Room.id.desc())
             .all())
    listed = []
    for room in rooms:
        entry = room.to_dict()
        entry['player_count'] = Player.query.filter_by(room_id=room.id).count()
        listed.append(entry)
    return listed


def get_current_room_id(user_id):
    player = Player.query.filter_by(user_id=user_id).order_by(Player.id).first()
    return player.room_id if player else None
