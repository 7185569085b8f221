from typing import Iterable, Optional, Tuple

from flask import current_app

from typeduel import db
from typeduel.errors import InvalidRequest, UserNotFound
from typeduel.models import User
from typeduel.services.scoring.leaderboard import aggregate
from typeduel.services.session import atomic

OUTCOMES = ('win', 'lose')

WIN_SCORE = 10
LOSE_SCORE = -5
WIN_COINS = 20


def compute_reward(outcome: str, player_count: Optional[int] = None, scaled: bool = True) -> Tuple[int, int]:
    """Return ``(score_change, coins_earned)`` for one player's result.

    With scaling, every racer beyond the second adds +2 score and +5 coins
    to a win, and softens a loss by 1 point (at most 3) while paying up to
    5 participation coins. Without scaling the result is a flat +10/-5.
    """
    if outcome not in OUTCOMES:
        raise InvalidRequest(f'Unknown outcome: {outcome}')
    if not scaled:
        return (WIN_SCORE, 0) if outcome == 'win' else (LOSE_SCORE, 0)
    extra = max(0, (player_count or 2) - 2)
    if outcome == 'win':
        return WIN_SCORE + 2 * extra, WIN_COINS + 5 * extra
    return LOSE_SCORE + min(3, extra), min(5, extra)


def apply_score(player_id, outcome: str, player_count: Optional[int] = None,
                placement: Optional[int] = None) -> dict:
    """Apply one result to the ledger inside the caller's transaction."""
    scaled = bool(current_app.config.get('SCALED_REWARDS', True))
    score_change, coins_earned = compute_reward(outcome, player_count, scaled=scaled)

    # Row lock serialises concurrent updates for the same user, which keeps
    # the leaderboard's old key accurate for the replace below
    user = User.query.filter_by(id=player_id).with_for_update().first()
    if not user:
        raise UserNotFound()

    previous_score = user.score
    new_score = max((previous_score or 0) + score_change, 0)
    user.score = new_score
    user.coins = (user.coins or 0) + coins_earned
    if outcome == 'win':
        user.wins = (user.wins or 0) + 1
    else:
        user.losses = (user.losses or 0) + 1
    user.total_games = (user.total_games or 0) + 1
    db.session.flush()

    if previous_score is not None and aggregate.has_entry(user.id):
        aggregate.replace(user.id, previous_score, new_score)
    else:
        # Scores recorded before the index existed are picked up on first change
        aggregate.insert(user.id, new_score)

    current_app.logger.info(
        f"[score] user={user.id} outcome={outcome} players={player_count} placement={placement} "
        f"change={score_change} coins={coins_earned} score={new_score}"
    )
    return {
        'score_change': score_change,
        'coins_earned': coins_earned,
        'new_score': new_score,
        'new_coins': user.coins,
    }


def update_player_score(player_id, outcome: str, player_count: Optional[int] = None,
                        placement: Optional[int] = None) -> dict:
    with atomic():
        return apply_score(player_id, outcome, player_count, placement)


def apply_multiplayer_scores(winner_id, all_player_ids: Iterable) -> dict:
    player_ids = list(all_player_ids)
    player_count = len(player_ids)
    results = {winner_id: apply_score(winner_id, 'win', player_count, placement=1)}
    for player_id in player_ids:
        if player_id != winner_id:
            results[player_id] = apply_score(player_id, 'lose', player_count)
    return results


def update_multiplayer_game_scores(winner_id, all_player_ids: Iterable) -> dict:
    """Credit the winner and debit everyone else, one transaction per player."""
    player_ids = list(all_player_ids)
    results = {winner_id: update_player_score(winner_id, 'win', len(player_ids), placement=1)}
    for player_id in player_ids:
        if player_id != winner_id:
            results[player_id] = update_player_score(player_id, 'lose', len(player_ids))
    return results
