"""
Reward policy and card arithmetic.

Pure functions only: no database access, so match completion, rankings and
tests all share one definition of every number shown to players.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence

from kingofcourt.utils.constants import (
    BASE_WINNER_RP,
    BASE_XP,
    LOSER_XP,
    MARGIN_RP_PER_POINT,
    MARGIN_XP_PER_POINT,
    MAX_MARGIN_BONUS_XP,
    MAX_WINNER_RP,
    WIN_BONUS_XP,
    XP_PER_LEVEL,
)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (Python's round() is banker's)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_rewards(winner_score: int, loser_score: int) -> Dict[str, int]:
    """
    Calculate XP/RP rewards for a decided match.

    The winner's XP margin bonus and RP both scale with the score margin and
    are capped.

    Args:
        winner_score: Winner's final score
        loser_score: Loser's final score

    Returns:
        Dict with winner_xp, winner_rp, loser_xp

    Examples:
        >>> calculate_rewards(21, 15)
        {'winner_xp': 160, 'winner_rp': 32, 'loser_xp': 50}
    """
    score_diff = max(winner_score - loser_score, 0)
    margin_bonus = min(MARGIN_XP_PER_POINT * score_diff, MAX_MARGIN_BONUS_XP)
    return {
        "winner_xp": BASE_XP + WIN_BONUS_XP + margin_bonus,
        "winner_rp": min(BASE_WINNER_RP + MARGIN_RP_PER_POINT * score_diff, MAX_WINNER_RP),
        "loser_xp": LOSER_XP,
    }


def determine_winner(
    player1_id: int, player2_id: int, player1_score: int, player2_score: int
) -> Optional[int]:
    """Return the higher scorer's ID, or None on a tie."""
    if player1_score > player2_score:
        return player1_id
    if player2_score > player1_score:
        return player2_id
    return None


def calculate_xp_progress(total_xp: int) -> Dict[str, int]:
    """
    Calculate progress through the current level.

    Examples:
        >>> calculate_xp_progress(550)
        {'current': 50, 'to_next': 50}
        >>> calculate_xp_progress(100)
        {'current': 0, 'to_next': 100}
    """
    current = total_xp % XP_PER_LEVEL
    return {"current": current, "to_next": XP_PER_LEVEL - current}


def calculate_win_rate(won: int, played: int) -> int:
    """Win rate as a whole percentage; 0 when no matches were played."""
    if played == 0:
        return 0
    return round_half_up(won / played * 100)


def calculate_accuracy(made: int, attempted: int) -> int:
    """Shooting accuracy as a whole percentage; 0 when nothing was attempted."""
    if attempted == 0:
        return 0
    return round_half_up(made / attempted * 100)


def assign_ranks(players: Sequence[Dict], key: str = "xp") -> List[Dict]:
    """
    Assign competition ranks to players already sorted by ``key`` descending.

    Equal values share a rank and the next distinct value skips ahead
    (1, 1, 3). Returns new dicts with a ``rank`` field added.
    """
    ranked = []
    current_rank = 1
    previous = None
    for index, player in enumerate(players):
        value = player[key]
        if previous is not None and value < previous:
            current_rank = index + 1
        previous = value
        ranked.append({**player, "rank": current_rank})
    return ranked
