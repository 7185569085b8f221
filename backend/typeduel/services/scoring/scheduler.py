from typing import Optional

from typeduel import socketio
from .ledger import update_player_score


def schedule_score_update(app, player_id, outcome: str, player_count: Optional[int] = None) -> None:
    """Run a score update as its own deferred transaction.

    - Runs inline in TESTING mode so tests observe the result
    - Fire-and-forget otherwise: failures are logged, never retried
    """
    def _worker():
        with app.app_context():
            try:
                result = update_player_score(player_id, outcome, player_count)
            except Exception:
                app.logger.exception(f"[score-deferred-failed] user={player_id} outcome={outcome}")
                return
            app.logger.info(
                f"[score-deferred] user={player_id} outcome={outcome} new_score={result['new_score']}"
            )

    if app.config.get('TESTING'):
        _worker()
    else:
        socketio.start_background_task(_worker)
