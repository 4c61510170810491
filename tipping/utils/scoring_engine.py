"""
This file contains the scoring engine for match predictions.

A finished match is compared against a user's prediction and rewarded with
points. Rules are checked in order and the first one that matches wins:

1. Exact result (both sides predicted correctly): 3 points.
2. Same trend (home win, away win or tie predicted correctly): 1 point.
3. Anything else: 0 points.

---
Architecture Overview:
1. `compute_score`: The pure scoring function. Integers in, points out.
2. `get_trend`: Classifies a result pair as a home win, away win or tie.
3. `parse_result` / `validate_result`: Turn raw input ("2 1", form values,
   task payloads) into a validated pair of non-negative integers before
   anything touches a ledger.
4. `accuracy_sample`: Folds the points of every player of a team into a
   single accuracy value in [0, 1] for one match.

The exceptions defined here are shared by the ledgers, the aggregation job
and the dispatch layer.
"""

from typing import Iterable, Tuple

from tipping.constants import (
    AWAY_WIN,
    EXACT_RESULT_POINTS,
    HOME_WIN,
    MISSED_POINTS,
    TIE,
    TREND_POINTS,
)


class ScoringEngineError(Exception):
    """Base exception for the scoring engine."""

    pass


class NotFoundError(ScoringEngineError):
    """Raised when a referenced match, team, tournament or ledger does not exist."""

    pass


class AllocationError(ScoringEngineError):
    """Raised when a new ledger cannot be created."""

    pass


class UpdateError(ScoringEngineError):
    """Raised when a ledger or summary field cannot be persisted."""

    pass


class ResultValidationError(ScoringEngineError):
    """Raised when a result pair is malformed, non-numeric or negative."""

    pass


class PredictionLockedError(ScoringEngineError):
    """Raised when predicting on a match that is finished or blocked."""

    pass


class DispatchError(ScoringEngineError):
    """Raised when a task cannot be handed over to the worker queue."""

    pass


def get_trend(result_1: int, result_2: int) -> str:
    if result_1 > result_2:
        return HOME_WIN
    if result_1 < result_2:
        return AWAY_WIN
    return TIE


def compute_score(
    result_1: int, result_2: int, predicted_1: int, predicted_2: int
) -> int:
    """
    Computes the points given for a prediction with respect to a match result.

    Examples:
        compute_score(3, 0, 3, 0)  # 3, exact result
        compute_score(2, 1, 3, 0)  # 1, home win predicted
        compute_score(1, 1, 2, 2)  # 1, tie predicted
        compute_score(2, 1, 1, 2)  # 0, opposite trend
    """
    if result_1 == predicted_1 and result_2 == predicted_2:
        return EXACT_RESULT_POINTS
    if result_1 > result_2 and predicted_1 > predicted_2:
        return TREND_POINTS
    if result_1 < result_2 and predicted_1 < predicted_2:
        return TREND_POINTS
    if result_1 == result_2 and predicted_1 == predicted_2:
        return TREND_POINTS
    return MISSED_POINTS


def _to_result_value(value, position: int) -> int:
    if isinstance(value, bool):
        raise ResultValidationError(f"Result {position} must be a number, got {value!r}")
    if isinstance(value, int):
        number = value
    else:
        try:
            number = int(str(value).strip())
        except (TypeError, ValueError):
            raise ResultValidationError(
                f"Result {position} must be a number, got {value!r}"
            )
    if number < 0:
        raise ResultValidationError(
            f"Result {position} must not be negative, got {number}"
        )
    return number


def validate_result(result_1, result_2) -> Tuple[int, int]:
    """Returns the result pair as integers or raises ResultValidationError."""
    return _to_result_value(result_1, 1), _to_result_value(result_2, 2)


def parse_result(raw: str) -> Tuple[int, int]:
    """
    Parses a result written as two numbers separated by whitespace.

    e.g., parse_result("2 1") -> (2, 1)
    """
    if raw is None:
        raise ResultValidationError("Result is missing")
    parts = str(raw).split()
    if len(parts) != 2:
        raise ResultValidationError(
            f"Result must have exactly 2 values, got {len(parts)}: {raw!r}"
        )
    return validate_result(parts[0], parts[1])


def max_score(player_count: int) -> int:
    """Maximum points a team of `player_count` players can make on one match."""
    return EXACT_RESULT_POINTS * player_count


def accuracy_sample(points: Iterable[int], player_count: int) -> float:
    """
    Computes the accuracy of a team on one match.

    `points` holds the score of every player who predicted the match; players
    without a prediction count as 0 but still weigh in `player_count`.
    """
    if player_count <= 0:
        raise ValueError("A team needs at least one player to have an accuracy")
    total = sum(points)
    sample = total / max_score(player_count)
    if not 0.0 <= sample <= 1.0:
        raise ValueError(
            f"Accuracy sample {sample} out of range for {player_count} players"
        )
    return sample
