"""
Entry points used when an admin reports the result of a match or repairs the
scores of a tournament.
"""
import logging

from tipping.constants import SYNC_SCORES_ENDPOINT, UPDATE_SCORES_ENDPOINT
from tipping.models import Match, Tournament
from tipping.utils.scoring_engine import NotFoundError, validate_result

from .dispatch import build_payload, dispatcher

logger = logging.getLogger(__name__)


def get_tournament(tournament_id):
    try:
        return Tournament.objects.get(pk=tournament_id)
    except Tournament.DoesNotExist:
        raise NotFoundError(f"Tournament {tournament_id} not found")


def get_match(tournament, match_id_number):
    try:
        return tournament.matches.get(id_number=match_id_number)
    except Match.DoesNotExist:
        raise NotFoundError(
            f"Match {match_id_number} not found in tournament {tournament.pk}"
        )


def on_match_finalized(
    tournament_id, match_id_number, result_1, result_2, run_async=None, force=False
):
    """
    Sets the final result of a match and updates the scores of the tournament,
    either through the worker queue or inline.

    Args:
        tournament_id: ID of the tournament
        match_id_number: Sequence number of the match in the tournament
        result_1: Final result of the first side
        result_2: Final result of the second side
        run_async: Use the worker queue; defaults to SCORES_ASYNC_ENABLED
        force: Aggregate the match even if it was already aggregated

    Returns:
        dict: 'queued' with the task id, or the status of the inline
        aggregation with its report

    Raises:
        NotFoundError: If the tournament or the match does not exist
        ResultValidationError: If the result is malformed
        DispatchError: If the task cannot be queued
    """
    result_1, result_2 = validate_result(result_1, result_2)
    tournament = get_tournament(tournament_id)
    match = get_match(tournament, match_id_number)

    if match.is_finished:
        logger.warning(
            f"Match {match.id_number} of {tournament.name} already finished "
            f"{match.result_1}-{match.result_2}, setting {result_1}-{result_2}"
        )
    match.set_result(result_1, result_2)

    if run_async is None:
        run_async = dispatcher.async_enabled

    if run_async:
        task_id = dispatcher.enqueue(
            UPDATE_SCORES_ENDPOINT, build_payload(tournament, match, force=force)
        )
        return {"status": "queued", "task_id": task_id, "match": match}

    from tipping.tasks.score_updates import run_aggregation

    report = run_aggregation(tournament, match, force=force)
    return {"status": report.status, "report": report, "match": match}


def block_match_predictions(tournament_id, match_id_number):
    """Stops accepting predictions for a match before it is played."""
    tournament = get_tournament(tournament_id)
    match = get_match(tournament, match_id_number)
    match.block_predictions()
    return match


def request_scores_sync(tournament_id):
    """
    Queues a resync of the global score of every participant of a tournament.

    Returns:
        str: The django-q task id
    """
    tournament = get_tournament(tournament_id)
    return dispatcher.enqueue(SYNC_SCORES_ENDPOINT, build_payload(tournament))
