"""
Score and accuracy ledgers.

A `UserTournamentScore` keeps the points a user earned on every finished match
of a tournament, in the order the matches were aggregated. A
`TeamTournamentAccuracy` keeps the running mean of a team's accuracy in a
tournament.

Both ledgers are created lazily through `get_or_create_ledger`, which reports
whether the ledger was just created or already existed. Writes lock the ledger
row for the duration of the read-modify-write.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, models, transaction

from tipping.constants import SCORE_VALUES
from tipping.utils.scoring_engine import AllocationError, UpdateError

from .base import TimestampMixin
from .core import Team, Tournament

logger = logging.getLogger(__name__)


class LedgerState(enum.Enum):
    CREATED = "created"
    EXISTING = "existing"


@dataclass
class LedgerLookup:
    """Result of a ledger get-or-create."""

    ledger: Any
    state: LedgerState

    @property
    def created(self) -> bool:
        return self.state is LedgerState.CREATED


class LedgerManager(models.Manager):
    """Shared get-or-create logic for ledgers keyed by (owner, tournament)."""

    owner_field = None

    def lookup(self, owner, tournament):
        """Returns the ledger of an (owner, tournament) pair or None."""
        return self.filter(
            **{self.owner_field: owner, "tournament": tournament}
        ).first()

    def create_ledger(self, owner, tournament, **fields):
        """
        Creates a new ledger.

        Raises:
            AllocationError: If the ledger cannot be stored
        """
        try:
            with transaction.atomic():
                return self.create(
                    **{self.owner_field: owner, "tournament": tournament}, **fields
                )
        except IntegrityError:
            # Lost a creation race, get_or_create_ledger reads the winner.
            raise
        except DatabaseError as e:
            raise AllocationError(
                f"Unable to create {self.model.__name__} for "
                f"{self.owner_field} {owner.pk} in tournament {tournament.pk}: {e}"
            ) from e

    def get_or_create_ledger(self, owner, tournament, **fields):
        ledger = self.lookup(owner, tournament)
        if ledger is not None:
            return LedgerLookup(ledger, LedgerState.EXISTING)

        try:
            ledger = self.create_ledger(owner, tournament, **fields)
        except IntegrityError:
            # Another worker created the ledger in the meantime.
            ledger = self.lookup(owner, tournament)
            if ledger is None:
                raise AllocationError(
                    f"Unable to create {self.model.__name__} for "
                    f"{self.owner_field} {owner.pk} in tournament {tournament.pk}"
                )
            return LedgerLookup(ledger, LedgerState.EXISTING)

        logger.info(
            f"Created {self.model.__name__} for {self.owner_field} {owner.pk} "
            f"in tournament {tournament.pk}"
        )
        return LedgerLookup(ledger, LedgerState.CREATED)


class UserTournamentScoreManager(LedgerManager):
    owner_field = "user"

    def sum_latest_per_tournament(self, user):
        """
        Sums the latest score of every tournament the user joined. Tournaments
        without a ledger or with an empty ledger count as 0.
        """
        ledgers = {ledger.tournament_id: ledger for ledger in self.filter(user=user)}
        total = 0
        for tournament_id in user.tournaments.values_list("pk", flat=True):
            ledger = ledgers.get(tournament_id)
            if ledger is not None:
                total += ledger.latest
        return total


class UserTournamentScore(TimestampMixin, models.Model):
    """Points of a user on every aggregated match of a tournament."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="scores"
    )
    tournament = models.ForeignKey(
        Tournament, on_delete=models.CASCADE, related_name="scores"
    )
    scores = models.JSONField(
        default=list,
        blank=True,
        help_text="Points earned on each finished match, oldest first.",
    )

    objects = UserTournamentScoreManager()

    class Meta:
        unique_together = ("user", "tournament")

    def __str__(self):
        return f"Score of {self.user} in {self.tournament}"

    @property
    def latest(self) -> int:
        return self.scores[-1] if self.scores else 0

    @property
    def total(self) -> int:
        return sum(self.scores)

    def append(self, points: int):
        """
        Appends the points of one match to the ledger and saves it.

        Raises:
            UpdateError: If the ledger cannot be saved
        """
        if points not in SCORE_VALUES:
            raise ValueError(f"{points} is not a valid match score")

        try:
            with transaction.atomic():
                locked = UserTournamentScore.objects.select_for_update().get(pk=self.pk)
                locked.scores = list(locked.scores) + [points]
                locked.save(update_fields=["scores", "updated_at"])
        except (DatabaseError, UserTournamentScore.DoesNotExist) as e:
            raise UpdateError(f"Unable to append score to ledger {self.pk}: {e}") from e

        self.scores = locked.scores
        self.updated_at = locked.updated_at
        return self.scores

    def replace(self, scores):
        """Overwrites the whole ledger, used when rebuilding it from predictions."""
        try:
            with transaction.atomic():
                locked = UserTournamentScore.objects.select_for_update().get(pk=self.pk)
                locked.scores = list(scores)
                locked.save(update_fields=["scores", "updated_at"])
        except (DatabaseError, UserTournamentScore.DoesNotExist) as e:
            raise UpdateError(f"Unable to rebuild ledger {self.pk}: {e}") from e
        self.scores = locked.scores
        return self.scores


class TeamTournamentAccuracyManager(LedgerManager):
    owner_field = "team"

    def get_or_create_ledger(self, team, tournament):
        """
        A ledger created after some matches were already played starts with
        the number of finished matches, minus the one being aggregated, so its
        mean stays consistent with those matches.
        """
        ledger = self.lookup(team, tournament)
        if ledger is not None:
            return LedgerLookup(ledger, LedgerState.EXISTING)

        seed_count = max(tournament.finished_matches_count() - 1, 0)
        return super().get_or_create_ledger(team, tournament, count=seed_count)

    def current_accuracy(self, team, tournament) -> Optional[float]:
        ledger = self.lookup(team, tournament)
        if ledger is None:
            return None
        return ledger.accuracy


class TeamTournamentAccuracy(TimestampMixin, models.Model):
    """Running mean of a team's prediction accuracy in a tournament."""

    team = models.ForeignKey(Team, on_delete=models.CASCADE, related_name="accuracies")
    tournament = models.ForeignKey(
        Tournament, on_delete=models.CASCADE, related_name="accuracies"
    )
    accuracy = models.FloatField(default=0.0)
    count = models.IntegerField(
        default=0, help_text="Number of matches folded into the mean."
    )

    objects = TeamTournamentAccuracyManager()

    class Meta:
        unique_together = ("team", "tournament")
        verbose_name_plural = "Team tournament accuracies"

    def __str__(self):
        return f"Accuracy of {self.team} in {self.tournament}: {self.accuracy:.2f}"

    def add(self, sample: float) -> float:
        """
        Folds the accuracy of one match into the running mean.

        Returns:
            float: The new mean

        Raises:
            UpdateError: If the ledger cannot be saved
        """
        if not 0.0 <= sample <= 1.0:
            raise ValueError(f"Accuracy sample {sample} must be within [0, 1]")

        try:
            with transaction.atomic():
                locked = TeamTournamentAccuracy.objects.select_for_update().get(
                    pk=self.pk
                )
                mean = locked.accuracy + (sample - locked.accuracy) / (locked.count + 1)
                locked.accuracy = min(max(mean, 0.0), 1.0)
                locked.count += 1
                locked.save(update_fields=["accuracy", "count", "updated_at"])
        except (DatabaseError, TeamTournamentAccuracy.DoesNotExist) as e:
            raise UpdateError(
                f"Unable to add accuracy to team {self.team_id} "
                f"in tournament {self.tournament_id}: {e}"
            ) from e

        self.accuracy = locked.accuracy
        self.count = locked.count
        return self.accuracy
