from flask import Blueprint, jsonify, request

from typeduel.errors import InvalidRequest
from typeduel.services.scoring.leaderboard import get_leaderboard, get_user_rank, page_of_scores


leaderboard = Blueprint('leaderboard', __name__)


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        raise InvalidRequest(f'{name} must be a number')


@leaderboard.route('/', methods=['GET'])
def top_players():
    return jsonify(get_leaderboard())


@leaderboard.route('/rank/<int:user_id>', methods=['GET'])
def user_rank(user_id):
    return jsonify(get_user_rank(user_id))


@leaderboard.route('/page', methods=['GET'])
def page():
    return jsonify(page_of_scores(_int_arg('offset', 0), _int_arg('num_items', 100)))
