import logging

from django.conf import settings
from django.db import models, transaction
from django.utils import timezone

from tipping.utils.scoring_engine import (
    PredictionLockedError,
    compute_score,
    get_trend,
    validate_result,
)

from .base import TimestampMixin
from .core import Side, Stage, Tournament

logger = logging.getLogger(__name__)


class Match(TimestampMixin, models.Model):
    """A single game between two sides within a tournament stage."""

    tournament = models.ForeignKey(
        Tournament, on_delete=models.CASCADE, related_name="matches"
    )
    stage = models.ForeignKey(
        Stage,
        on_delete=models.CASCADE,
        related_name="matches",
        null=True,
        blank=True,
    )
    id_number = models.IntegerField(
        help_text="Sequence number of the match within its tournament"
    )

    side_1 = models.ForeignKey(
        Side,
        on_delete=models.SET_NULL,
        related_name="matches_as_side_1",
        null=True,
        blank=True,
    )
    side_2 = models.ForeignKey(
        Side,
        on_delete=models.SET_NULL,
        related_name="matches_as_side_2",
        null=True,
        blank=True,
    )
    rule = models.CharField(
        max_length=100,
        blank=True,
        help_text="Placeholder for the sides before the bracket is resolved, e.g. '1A 2B'",
    )

    result_1 = models.IntegerField(null=True, blank=True)
    result_2 = models.IntegerField(null=True, blank=True)
    is_finished = models.BooleanField(default=False)
    can_predict = models.BooleanField(default=True)

    date = models.DateTimeField(null=True, blank=True)
    location = models.CharField(max_length=200, blank=True)

    aggregated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the result of this match was folded into the score ledgers",
    )

    class Meta:
        ordering = ["date", "id_number"]
        verbose_name_plural = "Matches"
        constraints = [
            models.UniqueConstraint(
                fields=["tournament", "id_number"], name="unique_match_number"
            )
        ]

    def __str__(self):
        rule = self.rule.split()
        if len(rule) > 1:
            side_1_name, side_2_name = rule[0], rule[1]
        else:
            side_1_name = self.side_1.name if self.side_1 else "TBD"
            side_2_name = self.side_2.name if self.side_2 else "TBD"
        return f"Match {self.id_number}: {side_1_name} vs {side_2_name}"

    @property
    def trend(self):
        if not self.is_finished:
            return None
        return get_trend(self.result_1, self.result_2)

    def set_result(self, result_1, result_2):
        """
        Sets the final result of the match. The match is finished and no
        longer accepts predictions afterwards.
        """
        self.result_1, self.result_2 = validate_result(result_1, result_2)
        self.is_finished = True
        self.can_predict = False
        self.save(
            update_fields=[
                "result_1",
                "result_2",
                "is_finished",
                "can_predict",
                "updated_at",
            ]
        )
        logger.info(
            f"Match {self.id_number} of tournament {self.tournament_id} "
            f"finished {self.result_1}-{self.result_2}"
        )

    def block_predictions(self):
        self.can_predict = False
        self.save(update_fields=["can_predict", "updated_at"])
        logger.info(
            f"Predictions blocked for match {self.id_number} of tournament {self.tournament_id}"
        )

    def claim_aggregation(self, force=False):
        """
        Marks the match as aggregated. Returns True only for the caller that
        performed the transition, so a match is folded into the ledgers once.
        """
        now = timezone.now()
        if force:
            Match.objects.filter(pk=self.pk).update(aggregated_at=now)
            self.aggregated_at = now
            return True

        claimed = Match.objects.filter(pk=self.pk, aggregated_at__isnull=True).update(
            aggregated_at=now
        )
        if claimed:
            self.aggregated_at = now
        return bool(claimed)

    def release_aggregation(self):
        Match.objects.filter(pk=self.pk).update(aggregated_at=None)
        self.aggregated_at = None


class PredictionManager(models.Manager):
    def predict(self, user, match, result_1, result_2):
        """
        Creates the user's prediction for a match or updates it in place.

        Raises:
            PredictionLockedError: If the match is finished or blocked
            ResultValidationError: If the predicted result is malformed
        """
        result_1, result_2 = validate_result(result_1, result_2)

        with transaction.atomic():
            match = Match.objects.select_for_update().get(pk=match.pk)
            if match.is_finished or not match.can_predict:
                raise PredictionLockedError(
                    f"Match {match.id_number} does not accept predictions anymore"
                )
            prediction, created = self.update_or_create(
                user=user,
                match=match,
                defaults={"result_1": result_1, "result_2": result_2},
            )

        action = "Created" if created else "Updated"
        logger.debug(f"{action} prediction of {user} for {match}: {result_1}-{result_2}")
        return prediction

    def for_match(self, match, users=None):
        """Returns the predictions of a match keyed by user id."""
        predictions = self.filter(match=match)
        if users is not None:
            predictions = predictions.filter(user__in=users)
        return {prediction.user_id: prediction for prediction in predictions}


class Prediction(TimestampMixin, models.Model):
    """One user's guessed result for one match."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="predictions"
    )
    match = models.ForeignKey(
        Match, on_delete=models.CASCADE, related_name="predictions"
    )
    result_1 = models.IntegerField()
    result_2 = models.IntegerField()

    objects = PredictionManager()

    class Meta:
        unique_together = ("user", "match")

    def __str__(self):
        return f"Prediction of {self.user} for {self.match}: {self.result_1}-{self.result_2}"

    def score(self):
        """Points earned by this prediction, 0 while the match is not finished."""
        if not self.match.is_finished:
            return 0
        return compute_score(
            self.match.result_1, self.match.result_2, self.result_1, self.result_2
        )
