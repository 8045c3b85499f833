"""
ELO rating formula.
Pure functions only: no state, no I/O.
"""

import math
from typing import Sequence
from pickleball_elo.utils.constants import (
    K_FACTOR,
    BASE_WIN_MARGIN,
    MARGIN_MULTIPLIER_STEP,
    MAX_MARGIN_BONUS,
)


def expected_score(rating_a: float, rating_b: float) -> float:
    """
    Calculate expected score for side A against side B using ELO formula.

    Formula: P(A beats B) = 1 / (1 + 10^((rating_B - rating_A) / 400))
    If rating_A > rating_B, result > 0.5 (A is favored)
    """
    return 1 / (1 + 10 ** ((rating_b - rating_a) / 400))


def margin_multiplier(score_margin: int) -> float:
    """
    Scale factor for the margin of victory.

    A win by 2 carries 1.0, each extra point adds 0.1, capped at 1.5
    (reached at a margin of 7). Margins below 2 stay at 1.0.
    """
    bonus = (score_margin - BASE_WIN_MARGIN) / MARGIN_MULTIPLIER_STEP
    return 1 + min(max(bonus, 0.0), MAX_MARGIN_BONUS)


def round_half_away_from_zero(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def team_rating(player_ratings: Sequence[float]) -> float:
    """Team rating is the arithmetic mean of its players' current ratings."""
    return sum(player_ratings) / len(player_ratings)


def calculate_winner(team1_score: int, team2_score: int) -> int:
    """
    Determine winner: 1 = team1, 2 = team2, -1 = tie.

    Args:
        team1_score: Score for team 1
        team2_score: Score for team 2

    Returns:
        Winner indicator (1, 2, or -1 for tie)
    """
    if team1_score > team2_score:
        return 1
    elif team2_score > team1_score:
        return 2
    else:
        return -1


def elo_delta(
    rating_a: float,
    rating_b: float,
    a_won: bool,
    score_margin: int,
    k: float = K_FACTOR,
) -> int:
    """
    Calculate the signed ELO change for side A.

    Args:
        rating_a: Team rating of the side under evaluation
        rating_b: Team rating of the opponent
        a_won: Whether side A won the game
        score_margin: Absolute point difference of the game
        k: Season K-factor

    Returns:
        Rounded rating change for side A (positive on a win, negative on a loss)
    """
    actual = 1.0 if a_won else 0.0
    raw = k * (actual - expected_score(rating_a, rating_b)) * margin_multiplier(score_margin)
    return round_half_away_from_zero(raw)


def game_elo_change(
    team1_rating: float,
    team2_rating: float,
    team1_score: int,
    team2_score: int,
    k: float = K_FACTOR,
) -> int:
    """
    Direction-free magnitude stored on a game.

    Always computed from team 1's point of view; the sign is reapplied
    per team when the change is applied (+ winners, - losers).
    """
    team1_won = team1_score > team2_score
    margin = abs(team1_score - team2_score)
    return abs(elo_delta(team1_rating, team2_rating, team1_won, margin, k))
