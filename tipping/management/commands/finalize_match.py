"""
Management command to report the result of a match and update scores.

Usage:
    python manage.py finalize_match <tournament_id> <match_id_number> "<result_1> <result_2>"
    python manage.py finalize_match <tournament_id> <match_id_number> "2 1" --sync
    python manage.py finalize_match <tournament_id> <match_id_number> "2 1" --sync --force
"""

import logging

from django.core.management.base import BaseCommand, CommandError

from tipping.services.match_results import on_match_finalized
from tipping.utils.scoring_engine import (
    DispatchError,
    NotFoundError,
    ResultValidationError,
    parse_result,
)

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = """
    Set the final result of a match and update the scores of the tournament.

    This command:
    1. Marks the match as finished and blocks its predictions
    2. Queues the score update task (or runs it inline with --sync)
    3. Continues on user/team errors (logs failures but doesn't stop)
    """

    def add_arguments(self, parser):
        parser.add_argument("tournament_id", type=int, help="Tournament ID")
        parser.add_argument(
            "match_id_number", type=int, help="Number of the match in the tournament"
        )
        parser.add_argument("result", type=str, help='Final result, e.g. "2 1"')
        parser.add_argument(
            "--sync",
            action="store_true",
            help="Update scores inline instead of using the worker queue",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Update scores even if the match was already aggregated",
        )

    def handle(self, *args, **options):
        try:
            result_1, result_2 = parse_result(options["result"])
            outcome = on_match_finalized(
                options["tournament_id"],
                options["match_id_number"],
                result_1,
                result_2,
                run_async=False if options["sync"] else None,
                force=options["force"],
            )
        except (NotFoundError, ResultValidationError, DispatchError) as e:
            raise CommandError(str(e))

        match = outcome["match"]
        self.stdout.write(
            f"Match {match.id_number} finished {match.result_1}-{match.result_2}"
        )

        if outcome["status"] == "queued":
            self.stdout.write(
                self.style.SUCCESS(f"Score update queued (task {outcome['task_id']})")
            )
            return

        report = outcome["report"]
        if outcome["status"] == "skipped":
            self.stdout.write(
                self.style.WARNING("Match was already aggregated, scores not updated")
            )
            return

        summary = report.as_dict()
        self.stdout.write(
            f"Updated {summary['users_updated']} users and {summary['teams_updated']} teams"
        )
        if report.failures:
            for failure in report.failures:
                self.stdout.write(
                    self.style.ERROR(
                        f"  ✗ {failure.kind} {failure.object_id}: {failure.reason}"
                    )
                )
        else:
            self.stdout.write(self.style.SUCCESS("Scores updated"))
