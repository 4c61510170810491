from django.core.management.base import BaseCommand, CommandError

from tipping.services.match_results import block_match_predictions
from tipping.utils.scoring_engine import NotFoundError


class Command(BaseCommand):
    help = "Stops accepting predictions for a match."

    def add_arguments(self, parser):
        parser.add_argument("tournament_id", type=int, help="Tournament ID")
        parser.add_argument(
            "match_id_number", type=int, help="Number of the match in the tournament"
        )

    def handle(self, *args, **options):
        try:
            match = block_match_predictions(
                options["tournament_id"], options["match_id_number"]
            )
        except NotFoundError as e:
            raise CommandError(str(e))
        self.stdout.write(self.style.SUCCESS(f"Predictions blocked for {match}"))
