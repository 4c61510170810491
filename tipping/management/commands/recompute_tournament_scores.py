"""
Management command to resync the scores of every participant of a tournament.

Usage:
    python manage.py recompute_tournament_scores <tournament_id>
    python manage.py recompute_tournament_scores <tournament_id> --rebuild
    python manage.py recompute_tournament_scores <tournament_id> --async
"""

import logging

from django.core.management.base import BaseCommand, CommandError

from tipping.services.match_results import get_tournament, request_scores_sync
from tipping.tasks.score_updates import recompute_tournament
from tipping.utils.scoring_engine import DispatchError, NotFoundError

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = """
    Recompute the global score of every participant of a tournament.

    By default global scores are recomputed from the existing score ledgers.
    With --rebuild the ledgers themselves are first rebuilt from the
    predictions of every finished match.
    """

    def add_arguments(self, parser):
        parser.add_argument("tournament_id", type=int, help="Tournament ID to resync")
        parser.add_argument(
            "--rebuild",
            action="store_true",
            help="Rebuild score ledgers from predictions before syncing",
        )
        parser.add_argument(
            "--async",
            action="store_true",
            dest="run_async",
            help="Queue the resync on the worker queue",
        )
        parser.add_argument(
            "--verbose", action="store_true", help="Increase logging verbosity"
        )

    def handle(self, *args, **options):
        tournament_id = options["tournament_id"]

        if options["verbose"]:
            logging.getLogger("tipping").setLevel(logging.DEBUG)

        try:
            tournament = get_tournament(tournament_id)
        except NotFoundError:
            raise CommandError(f"Tournament with ID {tournament_id} does not exist")

        if options["run_async"]:
            if options["rebuild"]:
                raise CommandError("--rebuild cannot be queued, run it without --async")
            try:
                task_id = request_scores_sync(tournament_id)
            except DispatchError as e:
                raise CommandError(str(e))
            self.stdout.write(self.style.SUCCESS(f"Resync queued (task {task_id})"))
            return

        self.stdout.write(f"Resyncing scores of tournament: {tournament.name} (ID: {tournament_id})")
        if recompute_tournament(tournament_id, rebuild=options["rebuild"]):
            self.stdout.write(self.style.SUCCESS("Scores synced"))
        else:
            raise CommandError("Unable to sync scores, see logs for failed participants")
