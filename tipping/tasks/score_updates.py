"""
Score update tasks for Django-Q.

When a match is finished its result is folded into:
- the score ledger of every participant of the tournament, followed by the
  participant's global score;
- the accuracy ledger of every team registered in the tournament, followed by
  the team's overall accuracy.

Every user and every team is updated independently: a failure is logged,
recorded in the returned report and processing goes on with the rest.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from django.db import DatabaseError
from django.utils import timezone

from tipping.constants import MISSED_POINTS
from tipping.models import (
    Match,
    Prediction,
    TeamTournamentAccuracy,
    Tournament,
    UserTournamentScore,
)
from tipping.services.dispatch import decode_payload
from tipping.utils.scoring_engine import (
    AllocationError,
    ResultValidationError,
    UpdateError,
    accuracy_sample,
    compute_score,
)

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"
PARTIAL = "partial"


@dataclass
class ItemResult:
    """Outcome of the update of a single user or team."""

    kind: str
    object_id: object
    status: str
    reason: str = ""
    value: Optional[float] = None


@dataclass
class AggregationReport:
    tournament_id: int
    match_id: Optional[int] = None
    status: str = SUCCESS
    users: List[ItemResult] = field(default_factory=list)
    teams: List[ItemResult] = field(default_factory=list)

    def add_success(self, kind, object_id, value=None):
        self._items(kind).append(ItemResult(kind, object_id, SUCCESS, value=value))

    def add_failure(self, kind, object_id, error):
        self._items(kind).append(ItemResult(kind, object_id, FAILED, reason=str(error)))
        logger.error(
            f"Failed to update {kind} {object_id} for tournament {self.tournament_id}: {error}",
            exc_info=True,
        )

    def add_skip(self, kind, object_id, reason):
        self._items(kind).append(ItemResult(kind, object_id, SKIPPED, reason=reason))
        logger.warning(f"Skipped {kind} {object_id}: {reason}")

    def _items(self, kind):
        return self.users if kind == "user" else self.teams

    @property
    def failures(self) -> List[ItemResult]:
        return [item for item in self.users + self.teams if item.status == FAILED]

    def failed_ids(self, kind) -> List[object]:
        return [item.object_id for item in self._items(kind) if item.status == FAILED]

    @property
    def ok(self) -> bool:
        return not self.failures

    def as_dict(self):
        return {
            "status": self.status,
            "tournament_id": self.tournament_id,
            "match_id": self.match_id,
            "users_updated": sum(1 for item in self.users if item.status == SUCCESS),
            "teams_updated": sum(1 for item in self.teams if item.status == SUCCESS),
            "failures": [
                {"kind": item.kind, "id": str(item.object_id), "reason": item.reason}
                for item in self.failures
            ],
        }


def score_for_match(prediction, match):
    """Points of a prediction on a finished match; no prediction scores 0."""
    if prediction is None:
        return MISSED_POINTS
    return compute_score(
        match.result_1, match.result_2, prediction.result_1, prediction.result_2
    )


def update_users_score(tournament, match, report, participants, predictions):
    """
    Appends the score of the match to every participant's ledger and updates
    their global score.
    """
    logger.info(
        f"Updating scores of {len(participants)} participants of {tournament.name} "
        f"for match {match.id_number}"
    )

    for user in participants:
        points = score_for_match(predictions.get(user.pk), match)
        try:
            lookup = UserTournamentScore.objects.get_or_create_ledger(user, tournament)
            lookup.ledger.append(points)
            global_score = user.update_global_score()
        except (AllocationError, UpdateError, DatabaseError) as e:
            report.add_failure("user", user.pk, e)
            continue
        report.add_success("user", user.pk, value=global_score)


def update_teams_accuracy(tournament, match, report, teams, predictions):
    """
    Folds the accuracy of every team on the match into its tournament accuracy
    ledger and updates the team's overall accuracy.
    """
    logger.info(
        f"Updating accuracy of {len(teams)} teams of {tournament.name} "
        f"for match {match.id_number}"
    )

    for team in teams:
        players = list(team.players.all())
        if not players:
            report.add_skip("team", team.pk, "team has no players")
            continue

        points = [score_for_match(predictions.get(player.pk), match) for player in players]
        sample = accuracy_sample(points, len(players))
        logger.debug(f"Team {team.name} scored {sum(points)} points, accuracy {sample}")

        try:
            lookup = TeamTournamentAccuracy.objects.get_or_create_ledger(team, tournament)
            accuracy = lookup.ledger.add(sample)
            team.update_accuracy(tournament, accuracy)
        except (AllocationError, UpdateError, DatabaseError) as e:
            report.add_failure("team", team.pk, e)
            continue
        report.add_success("team", team.pk, value=accuracy)


def run_aggregation(tournament, match, force=False):
    """
    Folds a finished match into the ledgers of a tournament.

    The match is claimed before anything is written so a redelivered or
    repeated job does not count it twice. `force` skips that check. If the
    job fails before the first ledger write the claim is released, so the
    redelivered job aggregates the match.

    Args:
        tournament: Tournament instance
        match: Finished Match instance of the tournament
        force: Aggregate even if the match was already aggregated

    Returns:
        AggregationReport: Per user and per team outcome

    Raises:
        ResultValidationError: If the match is not finished
    """
    report = AggregationReport(tournament_id=tournament.pk, match_id=match.pk)

    if match.tournament_id != tournament.pk:
        raise ResultValidationError(
            f"Match {match.pk} does not belong to tournament {tournament.pk}"
        )
    if not match.is_finished:
        raise ResultValidationError(f"Match {match.id_number} is not finished")

    if not match.claim_aggregation(force=force):
        logger.warning(
            f"Match {match.id_number} of {tournament.name} was already aggregated, skipping"
        )
        report.status = SKIPPED
        return report

    try:
        participants = list(tournament.participants.all())
        teams = list(tournament.teams.prefetch_related("players"))
        predictions = Prediction.objects.for_match(match)
    except Exception:
        logger.error(
            f"Unable to load match {match.id_number} of {tournament.name}, "
            f"releasing it for the next attempt",
            exc_info=True,
        )
        match.release_aggregation()
        raise

    logger.info(f"Aggregating match {match.id_number} of tournament {tournament.name}")
    update_users_score(tournament, match, report, participants, predictions)
    update_teams_accuracy(tournament, match, report, teams, predictions)

    if report.failures:
        report.status = PARTIAL
        logger.warning(
            f"Aggregation of match {match.id_number} finished with "
            f"{len(report.failures)} failures"
        )
    else:
        logger.info(f"Aggregation of match {match.id_number} finished")
    return report


def sync_tournament_scores(tournament):
    """
    Recomputes the global score of every participant of a tournament from
    their ledgers. Ledgers are left untouched.
    """
    report = AggregationReport(tournament_id=tournament.pk)
    participants = list(tournament.participants.all())
    logger.info(f"Syncing global scores of {len(participants)} participants of {tournament.name}")

    for user in participants:
        try:
            global_score = user.update_global_score()
        except (UpdateError, DatabaseError) as e:
            report.add_failure("user", user.pk, e)
            continue
        report.add_success("user", user.pk, value=global_score)

    if report.failures:
        report.status = PARTIAL
    return report


def rebuild_score_ledgers(tournament):
    """
    Rebuilds the score ledger of every participant from the predictions of all
    finished matches, then syncs the global scores.
    """
    report = AggregationReport(tournament_id=tournament.pk)
    matches = list(
        tournament.matches.filter(is_finished=True).order_by("date", "id_number")
    )
    participants = list(tournament.participants.all())
    predictions = {}
    for prediction in Prediction.objects.filter(match__in=matches, user__in=participants):
        predictions[(prediction.user_id, prediction.match_id)] = prediction

    logger.info(
        f"Rebuilding score ledgers of {len(participants)} participants "
        f"from {len(matches)} finished matches of {tournament.name}"
    )
    for user in participants:
        scores = [
            score_for_match(predictions.get((user.pk, match.pk)), match)
            for match in matches
        ]
        try:
            lookup = UserTournamentScore.objects.get_or_create_ledger(user, tournament)
            lookup.ledger.replace(scores)
            global_score = user.update_global_score()
        except (AllocationError, UpdateError, DatabaseError) as e:
            report.add_failure("user", user.pk, e)
            continue
        report.add_success("user", user.pk, value=global_score)

    tournament.matches.filter(pk__in=[match.pk for match in matches]).update(
        aggregated_at=timezone.now()
    )
    if report.failures:
        report.status = PARTIAL
    return report


def recompute_tournament(tournament_id, rebuild=False):
    """
    Administrative resync of a tournament, run without the worker queue.

    Returns:
        bool: True if every participant was updated
    """
    try:
        tournament = Tournament.objects.get(pk=tournament_id)
    except Tournament.DoesNotExist:
        logger.error(f"Tournament {tournament_id} not found")
        return False

    report = rebuild_score_ledgers(tournament) if rebuild else sync_tournament_scores(tournament)
    if report.failures:
        logger.error(
            f"Resync of tournament {tournament.name} failed for "
            f"{len(report.failures)} participants"
        )
        return False
    logger.info(f"Resync of tournament {tournament.name} done")
    return True


def update_scores_task(payload):
    """
    Django-Q task updating scores and accuracies after a match is finished.

    Args:
        payload: Map with the JSON encoded 'tournament' and 'match'

    Returns:
        dict: Result information with status and details
    """
    try:
        data = decode_payload(payload)
        if "match" not in data:
            raise ResultValidationError("Task payload has no match")
        tournament = Tournament.objects.get(pk=data["tournament"]["id"])
        match = tournament.matches.get(pk=data["match"]["id"])
        force = data.get("force") is True
        return run_aggregation(tournament, match, force=force).as_dict()
    except ResultValidationError as e:
        logger.error(f"Invalid update scores task: {e}")
        return {"status": "error", "reason": "invalid_payload", "details": str(e)}
    except Tournament.DoesNotExist:
        logger.error(f"Tournament {data['tournament']['id']} not found")
        return {"status": "error", "reason": "tournament_not_found"}
    except Match.DoesNotExist:
        logger.error(f"Match {data['match']['id']} not found")
        return {"status": "error", "reason": "match_not_found"}
    except Exception as e:
        logger.error(f"Error updating scores: {e}", exc_info=True)
        raise


def sync_scores_task(payload):
    """
    Django-Q task recomputing the global score of every participant of a
    tournament.

    Args:
        payload: Map with the JSON encoded 'tournament'

    Returns:
        dict: Result information with status and details
    """
    try:
        data = decode_payload(payload)
        tournament = Tournament.objects.get(pk=data["tournament"]["id"])
        return sync_tournament_scores(tournament).as_dict()
    except ResultValidationError as e:
        logger.error(f"Invalid sync scores task: {e}")
        return {"status": "error", "reason": "invalid_payload", "details": str(e)}
    except Tournament.DoesNotExist:
        logger.error(f"Tournament {data['tournament']['id']} not found")
        return {"status": "error", "reason": "tournament_not_found"}
    except Exception as e:
        logger.error(f"Error syncing scores: {e}", exc_info=True)
        raise
