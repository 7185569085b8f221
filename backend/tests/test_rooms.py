import pytest

from typeduel import db
from typeduel.errors import (
    AggregateKeyMismatch, NotHost, PlayerNotFound, PublicRoomRequiresApproval, RoomFull, RoomNotFound,
    Unauthenticated, UserNotFound,
)
from typeduel.models import ChatMessage, GameHistory, JoinRequest, LeaderboardEntry, Player, Room, User
from typeduel.services.rooms import controller, history, join_requests
from typeduel.services.rooms.phrases import PHRASES


def _room(room_id):
    db.session.expire_all()
    return db.session.get(Room, room_id)


def _players(room_id):
    db.session.expire_all()
    return Player.query.filter_by(room_id=room_id).order_by(Player.id).all()


def _ready_all(room_id, user_ids, rng=None):
    for uid in user_ids:
        controller.toggle_ready(uid, room_id, rng=rng)


@pytest.fixture()
def duel(make_user, rng):
    """A private room with a host and one guest, not yet ready."""
    host = make_user('alice')
    guest = make_user('bob')
    created = controller.create_room(host, rng=rng)
    controller.join_room(guest, created['room_code'])
    return created['room_id'], host, guest


@pytest.fixture()
def race(duel, rng):
    """The duel room after both players readied up."""
    room_id, host, guest = duel
    _ready_all(room_id, [host, guest], rng)
    return room_id, host, guest


def test_create_room_seats_creator_as_host(make_user, rng):
    uid = make_user()
    created = controller.create_room(uid, rng=rng)
    room = _room(created['room_id'])
    assert room.room_code == created['room_code']
    assert room.game_state == 'waiting'
    assert room.host_id == uid
    players = _players(room.id)
    assert [(p.user_id, p.is_host, p.is_ready, p.progress) for p in players] == [(uid, True, False, '')]


def test_create_room_requires_identity(app_ctx):
    with pytest.raises(Unauthenticated):
        controller.create_room(None)
    with pytest.raises(UserNotFound):
        controller.create_room(999)


def test_public_room_keeps_name_private_drops_it(make_user, rng):
    uid = make_user()
    public = controller.create_room(uid, 'public', '  Speed Demons ', rng=rng)
    private = controller.create_room(uid, 'private', 'ignored', rng=rng)
    assert _room(public['room_id']).room_name == 'Speed Demons'
    assert _room(private['room_id']).room_name is None


def test_room_code_retries_on_collision(make_user, monkeypatch):
    uid = make_user()
    codes = iter(['AAAA', 'AAAA', 'BBBB'])
    monkeypatch.setattr(controller, 'generate_room_code', lambda rng=None: next(codes))
    first = controller.create_room(uid)
    second = controller.create_room(uid)
    assert first['room_code'] == 'AAAA'
    assert second['room_code'] == 'BBBB'


def test_join_room_is_case_insensitive_and_idempotent(duel):
    room_id, host, guest = duel
    code = _room(room_id).room_code
    again = controller.join_room(guest, code.lower())
    assert again == {'room_id': room_id, 'room_code': code}
    assert len(_players(room_id)) == 2


def test_join_room_unknown_code(make_user):
    with pytest.raises(RoomNotFound):
        controller.join_room(make_user(), 'ZZZZ')


def test_join_room_full(flask_app, make_user, rng):
    flask_app.config['ROOM_CAPACITY'] = 2
    host = make_user()
    created = controller.create_room(host, rng=rng)
    controller.join_room(make_user(), created['room_code'])
    with pytest.raises(RoomFull):
        controller.join_room(make_user(), created['room_code'])


def test_join_room_holds_five_by_default(make_user, rng):
    created = controller.create_room(make_user(), rng=rng)
    for _ in range(4):
        controller.join_room(make_user(), created['room_code'])
    with pytest.raises(RoomFull):
        controller.join_room(make_user(), created['room_code'])


def test_join_public_room_by_code_is_refused(make_user, rng):
    created = controller.create_room(make_user(), 'public', rng=rng)
    with pytest.raises(PublicRoomRequiresApproval):
        controller.join_room(make_user(), created['room_code'])


def test_toggle_ready_requires_seat(duel, make_user):
    room_id, _, _ = duel
    with pytest.raises(PlayerNotFound):
        controller.toggle_ready(make_user(), room_id)


def test_round_starts_when_everyone_is_ready(duel, rng, monkeypatch):
    room_id, host, guest = duel
    monkeypatch.setattr(controller, 'now_ms', lambda: 5_000)
    assert controller.toggle_ready(host, room_id, rng=rng) == {'is_ready': True, 'started': False}
    assert _room(room_id).game_state == 'waiting'
    assert controller.toggle_ready(guest, room_id, rng=rng) == {'is_ready': True, 'started': True}

    room = _room(room_id)
    assert room.game_state == 'playing'
    assert room.current_phrase in PHRASES
    assert room.winner_id is None
    players = _players(room_id)
    assert {p.start_time for p in players} == {5_000}
    assert all(p.progress == '' and p.completion_time is None and p.wpm is None for p in players)


def test_single_player_cannot_start(make_user, rng):
    uid = make_user()
    created = controller.create_room(uid, rng=rng)
    assert controller.toggle_ready(uid, created['room_id'], rng=rng)['started'] is False
    assert _room(created['room_id']).game_state == 'waiting'


def test_unready_before_last_player_blocks_start(duel, make_user, rng):
    room_id, host, guest = duel
    third = make_user()
    controller.join_room(third, _room(room_id).room_code)
    controller.toggle_ready(host, room_id, rng=rng)
    controller.toggle_ready(guest, room_id, rng=rng)
    controller.toggle_ready(guest, room_id, rng=rng)
    assert controller.toggle_ready(third, room_id, rng=rng)['started'] is False
    assert _room(room_id).game_state == 'waiting'
    assert controller.toggle_ready(guest, room_id, rng=rng)['started'] is True


def test_progress_is_ignored_outside_playing(duel):
    room_id, host, _ = duel
    assert controller.update_progress(host, room_id, 'abc') == {'finished': False}
    assert _players(room_id)[0].progress == ''
    assert controller.update_progress(host, 12345, 'abc') == {'finished': False}


def test_progress_requires_seat(race, make_user):
    room_id, _, _ = race
    with pytest.raises(PlayerNotFound):
        controller.update_progress(make_user(), room_id, 'abc')


def test_progress_updates_metrics(race):
    room_id, host, _ = race
    phrase = _room(room_id).current_phrase
    typo = 'x' + phrase[1:5]
    controller.update_progress(host, room_id, typo, phrase=phrase, wpm=42)
    me = _players(room_id)[0]
    assert me.progress == typo
    assert me.accuracy == 80
    assert me.wpm == 42
    assert _room(room_id).game_state == 'playing'


def test_same_length_typo_does_not_win(race):
    room_id, host, _ = race
    phrase = _room(room_id).current_phrase
    almost = phrase[:-1] + ('?' if phrase[-1] != '?' else '!')
    assert controller.update_progress(host, room_id, almost)['finished'] is False
    assert _room(room_id).game_state == 'playing'


def test_exact_phrase_wins_and_freezes_others(race, monkeypatch):
    room_id, host, guest = race
    room = _room(room_id)
    phrase = room.current_phrase
    start = _players(room_id)[0].start_time

    controller.update_progress(guest, room_id, phrase[:10])
    monkeypatch.setattr(controller, 'now_ms', lambda: start + 60_000)
    result = controller.update_progress(host, room_id, phrase, wpm=70)
    assert result == {'finished': True, 'winner_id': host}

    room = _room(room_id)
    assert room.game_state == 'finished'
    assert room.winner_id == host
    winner, loser = _players(room_id)
    assert winner.completion_time == start + 60_000
    assert winner.wpm == 70
    assert loser.completion_time == start + 60_000
    assert loser.wpm == 2  # 10 chars in one minute
    assert loser.accuracy == 100

    entries = GameHistory.query.filter_by(room_id=room_id).all()
    assert len(entries) == 1
    assert entries[0].winner_id == host
    assert {p['user_id'] for p in entries[0].players} == {host, guest}


def test_second_finisher_is_a_no_op(race):
    room_id, host, guest = race
    phrase = _room(room_id).current_phrase
    controller.update_progress(host, room_id, phrase)
    assert controller.update_progress(guest, room_id, phrase) == {'finished': False}
    room = _room(room_id)
    assert room.winner_id == host
    assert GameHistory.query.filter_by(room_id=room_id).count() == 1


def test_win_settles_scores_once(race):
    room_id, host, guest = race
    phrase = _room(room_id).current_phrase
    controller.update_progress(host, room_id, phrase)
    controller.update_progress(guest, room_id, phrase)
    db.session.expire_all()
    winner, loser = db.session.get(User, host), db.session.get(User, guest)
    assert (winner.score, winner.wins, winner.coins, winner.total_games) == (10, 1, 20, 1)
    assert (loser.score, loser.losses, loser.coins, loser.total_games) == (0, 1, 0, 1)
    assert _room(room_id).is_settled is True


def test_win_without_inline_settlement(flask_app, race):
    flask_app.config['SETTLE_ON_WIN'] = False
    room_id, host, _ = race
    controller.update_progress(host, room_id, _room(room_id).current_phrase)
    db.session.expire_all()
    assert db.session.get(User, host).score is None
    assert _room(room_id).is_settled is False


def test_win_indexes_scores_missing_from_leaderboard(make_user, rng):
    host = make_user('alice', score=5)
    guest = make_user('bob')
    created = controller.create_room(host, rng=rng)
    controller.join_room(guest, created['room_code'])
    room_id = created['room_id']
    _ready_all(room_id, [host, guest], rng)

    result = controller.update_progress(host, room_id, _room(room_id).current_phrase)
    assert result == {'finished': True, 'winner_id': host}
    room = _room(room_id)
    assert (room.game_state, room.winner_id, room.is_settled) == ('finished', host, True)
    assert {e.user_id: e.score for e in LeaderboardEntry.query.all()} == {host: 15, guest: 0}


def test_failed_settlement_still_records_the_win(race, monkeypatch):
    room_id, host, guest = race

    def _stale_index(*args, **kwargs):
        raise AggregateKeyMismatch('stale leaderboard key')

    monkeypatch.setattr(controller, 'apply_multiplayer_scores', _stale_index)
    phrase = _room(room_id).current_phrase
    assert controller.update_progress(host, room_id, phrase) == {'finished': True, 'winner_id': host}
    room = _room(room_id)
    assert (room.game_state, room.winner_id, room.is_settled) == ('finished', host, False)
    assert GameHistory.query.filter_by(room_id=room_id).count() == 1
    assert db.session.get(User, host).score is None

    # Later exact matches find the round already over
    assert controller.update_progress(guest, room_id, phrase) == {'finished': False}


def test_start_new_round_resets_everything(race):
    room_id, host, guest = race
    controller.update_progress(host, room_id, _room(room_id).current_phrase)
    controller.start_new_round(host, room_id)
    room = _room(room_id)
    assert (room.game_state, room.current_phrase, room.winner_id) == ('waiting', None, None)
    for p in _players(room_id):
        assert (p.progress, p.is_ready, p.wpm, p.accuracy, p.start_time, p.completion_time) == \
            ('', False, None, None, None, None)


def test_start_new_round_missing_room(make_user):
    with pytest.raises(RoomNotFound):
        controller.start_new_round(make_user(), 4242)


def test_ready_after_reset_starts_next_round(race, rng):
    room_id, host, guest = race
    controller.update_progress(host, room_id, _room(room_id).current_phrase)
    controller.start_new_round(host, room_id)
    _ready_all(room_id, [host, guest], rng)
    assert _room(room_id).game_state == 'playing'


def test_host_leaving_hands_room_to_earliest_player(duel, make_user):
    room_id, host, guest = duel
    late = make_user()
    controller.join_room(late, _room(room_id).room_code)
    result = controller.leave_room(host, room_id)
    assert result == {'left': True, 'room_deleted': False, 'host_id': guest}
    room = _room(room_id)
    assert room.host_id == guest
    hosts = [p.user_id for p in _players(room_id) if p.is_host]
    assert hosts == [guest]


def test_guest_leaving_keeps_host(duel):
    room_id, host, guest = duel
    controller.leave_room(guest, room_id)
    assert _room(room_id).host_id == host


def test_last_player_leaving_deletes_room_and_records(race):
    room_id, host, guest = race
    controller.update_progress(host, room_id, _room(room_id).current_phrase)
    history.send_message(guest, room_id, 'gg')
    db.session.add(JoinRequest(room_id=room_id, requester_id=guest, requester_name='bob', status='rejected'))
    db.session.commit()

    controller.leave_room(host, room_id)
    assert controller.leave_room(guest, room_id) == {'left': True, 'room_deleted': True}
    assert _room(room_id) is None
    assert GameHistory.query.filter_by(room_id=room_id).count() == 0
    assert ChatMessage.query.filter_by(room_id=room_id).count() == 0
    assert JoinRequest.query.filter_by(room_id=room_id).count() == 0


def test_leave_twice_is_safe(duel):
    room_id, host, guest = duel
    controller.leave_room(guest, room_id)
    assert controller.leave_room(guest, room_id) == {'left': False}
    assert len(_players(room_id)) == 1


def test_complete_game_requires_playing(duel):
    room_id, _, _ = duel
    assert controller.complete_game(room_id) is False
    assert _room(room_id).game_state == 'waiting'


def test_player_issued_completion_is_host_only(race, make_user):
    room_id, host, guest = race
    with pytest.raises(NotHost):
        controller.complete_game(room_id, user_id=guest)
    with pytest.raises(NotHost):
        controller.complete_game(room_id, user_id=make_user())
    assert _room(room_id).game_state == 'playing'
    assert controller.complete_game(room_id, user_id=host) is True
    assert _room(room_id).game_state == 'finished'


def test_complete_game_without_winner_only_finishes(race):
    room_id, host, _ = race
    assert controller.complete_game(room_id) is True
    assert _room(room_id).game_state == 'finished'
    db.session.expire_all()
    assert db.session.get(User, host).score is None


def test_complete_game_credits_recorded_winner(race):
    room_id, host, guest = race
    room = _room(room_id)
    room.winner_id = guest
    db.session.commit()

    assert controller.complete_game(room_id) is True
    db.session.expire_all()
    assert db.session.get(User, guest).score == 10
    assert db.session.get(User, host).score == 0
    assert db.session.get(User, host).losses == 1
    assert _room(room_id).is_settled is True


def test_complete_game_does_not_double_credit(race):
    room_id, host, guest = race
    room = _room(room_id)
    room.winner_id = host
    room.is_settled = True
    db.session.commit()

    controller.complete_game(room_id)
    db.session.expire_all()
    assert db.session.get(User, host).score is None


def test_room_state_for_host_and_guest(make_user, rng):
    host = make_user()
    guest = make_user()
    created = controller.create_room(host, 'public', 'Lobby', rng=rng)
    join_requests.request_to_join_room(guest, created['room_id'])

    host_view = controller.get_room_state(host, created['room_id'])
    assert host_view['is_host'] is True
    assert host_view['is_current_user_in_room'] is True
    assert host_view['current_player']['user_id'] == host
    assert [r['requester_id'] for r in host_view['join_requests']] == [guest]

    guest_view = controller.get_room_state(guest, created['room_id'])
    assert guest_view['is_host'] is False
    assert guest_view['is_current_user_in_room'] is False
    assert guest_view['current_player'] is None
    assert guest_view['join_requests'] == []


def test_room_state_missing_room(make_user):
    with pytest.raises(RoomNotFound):
        controller.get_room_state(make_user(), 999)


def test_public_room_listing(make_user, rng):
    host = make_user()
    shown = controller.create_room(host, 'public', 'Open', rng=rng)
    hidden = controller.create_room(host, 'public', 'Closed', rng=rng)
    controller.create_room(host, 'private', rng=rng)
    controller.set_room_active(host, hidden['room_id'], False)

    listed = controller.list_public_rooms()
    assert [r['id'] for r in listed] == [shown['room_id']]
    assert listed[0]['player_count'] == 1


def test_current_room_id(duel, make_user):
    room_id, host, _ = duel
    assert controller.get_current_room_id(host) == room_id
    assert controller.get_current_room_id(make_user()) is None
