from typeduel import db, bcrypt
from flask_login import UserMixin
import json
import time


def now_ms():
    return int(time.time() * 1000)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(64), nullable=True)
    # None until the first settled game; the leaderboard only indexes scored users
    score = db.Column(db.Integer, nullable=True)
    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    total_games = db.Column(db.Integer, default=0, nullable=False)
    coins = db.Column(db.Integer, default=0, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def display_name(self):
        return self.name or self.username or 'Anonymous'

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'name': self.display_name,
            'score': self.score,
            'wins': self.wins,
            'losses': self.losses,
            'total_games': self.total_games,
            'coins': self.coins,
        }


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(4), unique=True, index=True, nullable=False)
    room_type = db.Column(db.String(16), default='private', nullable=False)  # public, private
    room_name = db.Column(db.String(64), nullable=True)
    host_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    # waiting, ready (reserved), playing, finished
    game_state = db.Column(db.String(16), default='waiting', nullable=False)
    current_phrase = db.Column(db.Text, nullable=True)
    winner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_settled = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.BigInteger, default=now_ms, nullable=False)
    players = db.relationship('Player', back_populates='room', order_by='Player.id')

    def to_dict(self):
        return {
            'id': self.id,
            'room_code': self.room_code,
            'room_type': self.room_type,
            'room_name': self.room_name,
            'host_id': self.host_id,
            'game_state': self.game_state,
            'current_phrase': self.current_phrase,
            'winner_id': self.winner_id,
            'is_active': self.is_active,
            'created_at': self.created_at,
        }


class Player(db.Model):
    __tablename__ = 'player'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'room_id', name='uq_player_user_room'),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    progress = db.Column(db.Text, default='', nullable=False)
    is_ready = db.Column(db.Boolean, default=False, nullable=False)
    is_host = db.Column(db.Boolean, default=False, nullable=False)
    wpm = db.Column(db.Integer, nullable=True)
    accuracy = db.Column(db.Integer, nullable=True)
    start_time = db.Column(db.BigInteger, nullable=True)
    completion_time = db.Column(db.BigInteger, nullable=True)
    room = db.relationship('Room', back_populates='players')

    def reset_round(self):
        self.progress = ''
        self.wpm = None
        self.accuracy = None
        self.completion_time = None

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'user_id': self.user_id,
            'name': self.name,
            'progress': self.progress,
            'is_ready': self.is_ready,
            'is_host': self.is_host,
            'wpm': self.wpm,
            'accuracy': self.accuracy,
            'start_time': self.start_time,
            'completion_time': self.completion_time,
        }

    def snapshot(self):
        return {
            'user_id': self.user_id,
            'name': self.name,
            'wpm': self.wpm,
            'accuracy': self.accuracy,
            'completion_time': self.completion_time,
        }


class JoinRequest(db.Model):
    __tablename__ = 'join_request'
    __table_args__ = (
        db.Index(
            'uq_join_request_pending', 'room_id', 'requester_id', unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    requester_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    requester_name = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), default='pending', nullable=False)  # pending, accepted, rejected
    redirected = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.BigInteger, default=now_ms, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'requester_id': self.requester_id,
            'requester_name': self.requester_name,
            'status': self.status,
            'redirected': self.redirected,
            'created_at': self.created_at,
        }


class GameHistory(db.Model):
    __tablename__ = 'game_history'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    ended_at = db.Column(db.BigInteger, nullable=False)
    winner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    players_json = db.Column(db.Text, nullable=False, default='[]')

    @property
    def players(self):
        return json.loads(self.players_json or '[]')

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'ended_at': self.ended_at,
            'winner_id': self.winner_id,
            'players': self.players,
        }


class ChatMessage(db.Model):
    __tablename__ = 'chat_message'
    __table_args__ = (
        db.Index('ix_chat_message_room_sent', 'room_id', 'sent_at'),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    user_name = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(16), default='text', nullable=False)  # text, emoji, sticker
    content = db.Column(db.Text, nullable=False)
    sent_at = db.Column(db.BigInteger, default=now_ms, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'user_id': self.user_id,
            'user_name': self.user_name,
            'kind': self.kind,
            'content': self.content,
            'sent_at': self.sent_at,
        }


class LeaderboardEntry(db.Model):
    """One row per scored user, ordered by ``(score, id)``."""
    __tablename__ = 'leaderboard_entry'
    __table_args__ = (
        db.Index('ix_leaderboard_entry_score_id', 'score', 'id'),
    )
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    score = db.Column(db.Integer, nullable=False)
