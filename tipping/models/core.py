import logging
import uuid

from django.conf import settings
from django.contrib.auth.models import (
    AbstractBaseUser,
    BaseUserManager,
    PermissionsMixin,
)
from django.db import DatabaseError, models
from django.utils.text import slugify

from tipping.utils.scoring_engine import UpdateError

from .base import ActiveMixin, NamedMixin, SlugMixin, TimestampMixin

logger = logging.getLogger(__name__)


class UserManager(BaseUserManager):
    """Custom manager for User model"""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("The Email field must be set")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    uuid = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    slug = models.SlugField(max_length=255, unique=True, blank=True)
    email = models.EmailField(unique=True, null=True, blank=True)
    username = models.CharField(max_length=150)
    created_at = models.DateTimeField(auto_now_add=True)

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    score = models.IntegerField(
        default=0,
        help_text="Global score: latest score of every tournament the user joined.",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = "users"

    def __str__(self):
        return self.username or self.slug

    def save(self, *args, **kwargs):
        if not self.slug:
            source = self.email.split("@")[0] if self.email else self.username
            base_slug = slugify(source) or "user"
            slug = base_slug
            counter = 1
            while User.objects.filter(slug=slug).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1
            self.slug = slug

        super().save(*args, **kwargs)

    def update_global_score(self):
        """
        Recomputes the global score from the user's tournament score ledgers
        and persists it.

        Returns:
            int: The new global score

        Raises:
            UpdateError: If the ledgers cannot be read or the user cannot be saved
        """
        from tipping.models.scoring import UserTournamentScore

        try:
            self.score = UserTournamentScore.objects.sum_latest_per_tournament(self)
            self.save(update_fields=["score"])
        except DatabaseError as e:
            raise UpdateError(f"Unable to update global score of user {self.pk}: {e}") from e
        return self.score


class Team(NamedMixin, SlugMixin, TimestampMixin):
    """A group of users competing together in tournaments."""

    description = models.TextField(blank=True)
    admin = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="administered_teams",
    )
    players = models.ManyToManyField(
        settings.AUTH_USER_MODEL, related_name="teams", blank=True
    )
    accuracy = models.FloatField(
        default=0.0,
        help_text="Overall accuracy: mean of the team's accuracy in every tournament.",
    )

    class Meta:
        ordering = ["name"]

    def update_accuracy(self, tournament, accuracy):
        """
        Updates the overall accuracy of the team given its new accuracy in a
        tournament.

        Every tournament accuracy ledger of the team weighs the same; `accuracy`
        replaces the stored value of `tournament`'s ledger.
        """
        try:
            ledgers = list(self.accuracies.all())
        except DatabaseError as e:
            raise UpdateError(f"Unable to read accuracies of team {self.pk}: {e}") from e

        values = []
        replaced = False
        for ledger in ledgers:
            if ledger.tournament_id == tournament.pk:
                values.append(accuracy)
                replaced = True
            else:
                values.append(ledger.accuracy)
        if not replaced:
            values.append(accuracy)

        self.accuracy = sum(values) / len(values)
        try:
            self.save(update_fields=["accuracy", "updated_at"])
        except DatabaseError as e:
            raise UpdateError(f"Unable to save accuracy of team {self.pk}: {e}") from e
        logger.debug(f"Team {self.name} overall accuracy is now {self.accuracy}")
        return self.accuracy


class Tournament(NamedMixin, SlugMixin, ActiveMixin, TimestampMixin):
    """Tournament users and teams join to predict matches."""

    description = models.TextField(blank=True)
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)

    participants = models.ManyToManyField(
        settings.AUTH_USER_MODEL, related_name="tournaments", blank=True
    )
    teams = models.ManyToManyField(Team, related_name="tournaments", blank=True)

    class Meta:
        ordering = ["-start_date", "name"]

    def join(self, user):
        self.participants.add(user)

    def leave(self, user):
        self.participants.remove(user)

    def add_team(self, team):
        """Registers a team and all of its players in the tournament."""
        self.teams.add(team)
        self.participants.add(*team.players.all())

    def finished_matches_count(self):
        return self.matches.filter(is_finished=True).count()


class Stage(NamedMixin, TimestampMixin):
    """A phase of a tournament, used to group matches."""

    tournament = models.ForeignKey(
        Tournament, on_delete=models.CASCADE, related_name="stages"
    )
    order = models.IntegerField(default=0)

    class Meta:
        ordering = ["tournament", "order"]


class Side(NamedMixin):
    """A national team or club playing the matches of a tournament."""

    code = models.CharField(max_length=10, blank=True)

    class Meta:
        ordering = ["name"]
