"""Leaderboard index over user scores.

``LeaderboardEntry`` keeps one row per scored user and is indexed on
``(score, id)``, so counting above a threshold, reading the n-th key and
paging never scan the user table. The ledger keeps it in step with
``User.score`` inside the same transaction as each score change.
"""
from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy import and_, or_, text

from typeduel import db
from typeduel.errors import AggregateKeyMismatch, InvalidRequest
from typeduel.models import LeaderboardEntry, User
from typeduel.services.session import atomic


class LeaderboardAggregate:
    """Sorted view of ``(score, user_id)`` pairs, ascending by score then insertion."""

    def _ordered(self):
        return LeaderboardEntry.query.order_by(LeaderboardEntry.score.asc(), LeaderboardEntry.id.asc())

    def count(self, lower: Optional[int] = None, upper: Optional[int] = None,
              lower_inclusive: bool = True, upper_inclusive: bool = True) -> int:
        query = LeaderboardEntry.query
        if lower is not None:
            query = query.filter(LeaderboardEntry.score >= lower if lower_inclusive else LeaderboardEntry.score > lower)
        if upper is not None:
            query = query.filter(LeaderboardEntry.score <= upper if upper_inclusive else LeaderboardEntry.score < upper)
        return query.count()

    def at(self, offset: int) -> Tuple[int, int]:
        """Return ``(score, user_id)`` at ``offset``; 0 is the lowest, -1 the highest."""
        total = self.count()
        if offset < 0:
            offset += total
        if not 0 <= offset < total:
            raise IndexError(f'leaderboard offset {offset} out of range for {total} entries')
        entry = self._ordered().offset(offset).first()
        return entry.score, entry.user_id

    def paginate(self, cursor: Optional[Tuple[int, int]] = None, page_size: int = 100):
        """Ascending page of ``(score, user_id)`` after ``cursor``.

        Returns ``(entries, next_cursor, is_done)``; pass ``next_cursor`` back
        to continue.
        """
        query = self._ordered()
        if cursor is not None:
            score, entry_id = cursor
            query = query.filter(or_(
                LeaderboardEntry.score > score,
                and_(LeaderboardEntry.score == score, LeaderboardEntry.id > entry_id),
            ))
        rows = query.limit(page_size + 1).all()
        is_done = len(rows) <= page_size
        rows = rows[:page_size]
        next_cursor = (rows[-1].score, rows[-1].id) if rows else cursor
        return [(r.score, r.user_id) for r in rows], next_cursor, is_done

    def _entry(self, user_id) -> Optional[LeaderboardEntry]:
        return LeaderboardEntry.query.filter_by(user_id=user_id).with_for_update().first()

    def has_entry(self, user_id) -> bool:
        return self._entry(user_id) is not None

    def insert(self, user_id, score: int) -> None:
        if self._entry(user_id) is not None:
            raise AggregateKeyMismatch(f'user {user_id} is already on the leaderboard')
        db.session.add(LeaderboardEntry(user_id=user_id, score=score))
        db.session.flush()

    def insert_if_missing(self, user_id, score: int) -> bool:
        if self._entry(user_id) is not None:
            return False
        self.insert(user_id, score)
        return True

    def remove(self, user_id, score: int) -> None:
        entry = self._entry(user_id)
        if entry is None or entry.score != score:
            raise AggregateKeyMismatch(f'user {user_id} has no leaderboard entry with score {score}')
        db.session.delete(entry)
        db.session.flush()

    def replace(self, user_id, old_score: int, new_score: int) -> None:
        # The sort key changes, so the entry is re-inserted rather than patched
        self.remove(user_id, old_score)
        self.insert(user_id, new_score)

    def clear(self) -> None:
        LeaderboardEntry.query.delete()


aggregate = LeaderboardAggregate()


def _leaderboard_row(rank, user):
    return {
        'rank': rank,
        'user_id': user.id,
        'name': user.display_name,
        'score': user.score,
        'wins': user.wins,
        'losses': user.losses,
        'total_games': user.total_games,
    }


def get_leaderboard(limit: Optional[int] = None) -> List[dict]:
    if limit is None:
        limit = int(current_app.config.get('LEADERBOARD_SIZE', 10))
    total = aggregate.count()
    rows = []
    for i in range(min(limit, total)):
        _, user_id = aggregate.at(total - 1 - i)
        user = db.session.get(User, user_id)
        if user and user.score is not None:
            rows.append(_leaderboard_row(i + 1, user))
    return rows


def get_user_rank(user_id) -> Optional[dict]:
    user = db.session.get(User, user_id)
    if not user or user.score is None:
        return None
    higher = aggregate.count(lower=user.score, lower_inclusive=False)
    return {
        'rank': higher + 1,
        'score': user.score,
        'total_players': aggregate.count(),
    }


def page_of_scores(offset: int = 0, num_items: int = 100) -> List[dict]:
    """Slice of the leaderboard from the top, for paged listings."""
    if offset < 0 or num_items <= 0:
        raise InvalidRequest('offset must be >= 0 and num_items > 0')
    entries = (LeaderboardEntry.query
               .order_by(LeaderboardEntry.score.desc(), LeaderboardEntry.id.desc())
               .offset(offset).limit(num_items).all())
    page = []
    for position, entry in enumerate(entries, start=offset + 1):
        user = db.session.get(User, entry.user_id)
        page.append({
            'position': position,
            'user_id': entry.user_id,
            'name': user.display_name if user else None,
            'score': entry.score,
        })
    return page


def backfill_aggregate() -> dict:
    """Rebuild the index from ``User.score``; safe to run repeatedly."""
    with atomic():
        if db.session.get_bind().dialect.name == 'postgresql':
            # Keep per-user score updates out while the index is rebuilt
            db.session.execute(text('LOCK TABLE leaderboard_entry IN EXCLUSIVE MODE'))
        aggregate.clear()
        users = User.query.order_by(User.id).all()
        inserted = 0
        for user in users:
            if user.score is not None and aggregate.insert_if_missing(user.id, user.score):
                inserted += 1
    current_app.logger.info(f"[leaderboard-backfill] users={len(users)} indexed={inserted}")
    return {'processed': len(users), 'indexed': inserted}
