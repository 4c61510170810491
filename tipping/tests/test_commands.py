"""
Tests for the score management commands.
"""
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from tipping.models import Match, Prediction, Tournament, User, UserTournamentScore
from tipping.services import dispatcher
from tipping.utils.scoring_engine import UpdateError


class CommandTestCase(TestCase):
    def setUp(self):
        self.tournament = Tournament.objects.create(name="World Cup")
        self.user = User.objects.create_user(email="alice@test.com", username="alice")
        self.tournament.join(self.user)
        self.match = Match.objects.create(tournament=self.tournament, id_number=1)

    def run_command(self, *args):
        out = StringIO()
        call_command(*args, stdout=out)
        return out.getvalue()


class FinalizeMatchCommandTest(CommandTestCase):
    def test_finalize_match_inline(self):
        Prediction.objects.predict(self.user, self.match, 2, 1)

        output = self.run_command("finalize_match", str(self.tournament.pk), "1", "2 1", "--sync")

        self.assertIn("Match 1 finished 2-1", output)
        self.assertIn("Updated 1 users and 0 teams", output)
        self.assertIn("Scores updated", output)
        self.assertEqual(
            UserTournamentScore.objects.get(user=self.user).scores, [3]
        )

    def test_finalize_match_twice(self):
        self.run_command("finalize_match", str(self.tournament.pk), "1", "2 1", "--sync")

        output = self.run_command("finalize_match", str(self.tournament.pk), "1", "2 1", "--sync")

        self.assertIn("already aggregated", output)
        self.assertEqual(UserTournamentScore.objects.get(user=self.user).scores, [0])

    def test_finalize_match_with_force(self):
        self.run_command("finalize_match", str(self.tournament.pk), "1", "0 0", "--sync")

        self.run_command(
            "finalize_match", str(self.tournament.pk), "1", "0 0", "--sync", "--force"
        )

        self.assertEqual(UserTournamentScore.objects.get(user=self.user).scores, [0, 0])

    def test_finalize_match_reports_failures(self):
        with patch.object(
            User, "update_global_score", autospec=True, side_effect=UpdateError("down")
        ):
            output = self.run_command(
                "finalize_match", str(self.tournament.pk), "1", "2 1", "--sync"
            )

        self.assertIn(f"✗ user {self.user.pk}: down", output)
        self.assertNotIn("Scores updated", output)

    @patch.object(dispatcher, "async_enabled", True)
    def test_finalize_match_queued(self):
        with patch("django_q.tasks.async_task", return_value="task-1"):
            output = self.run_command("finalize_match", str(self.tournament.pk), "1", "3 3")

        self.assertIn("Score update queued (task task-1)", output)
        self.assertFalse(UserTournamentScore.objects.exists())

    def test_finalize_match_invalid_tournament(self):
        with self.assertRaises(CommandError) as cm:
            self.run_command("finalize_match", "99999", "1", "2 1", "--sync")
        self.assertIn("not found", str(cm.exception))

    def test_finalize_match_malformed_result(self):
        with self.assertRaises(CommandError):
            self.run_command("finalize_match", str(self.tournament.pk), "1", "2-1", "--sync")
        self.match.refresh_from_db()
        self.assertFalse(self.match.is_finished)


class RecomputeTournamentScoresCommandTest(CommandTestCase):
    def test_recompute(self):
        UserTournamentScore.objects.create(
            user=self.user, tournament=self.tournament, scores=[3, 1]
        )

        output = self.run_command("recompute_tournament_scores", str(self.tournament.pk))

        self.assertIn("Scores synced", output)
        self.user.refresh_from_db()
        self.assertEqual(self.user.score, 1)

    def test_recompute_with_rebuild(self):
        Prediction.objects.predict(self.user, self.match, 1, 1)
        self.match.set_result(1, 1)

        self.run_command("recompute_tournament_scores", str(self.tournament.pk), "--rebuild")

        self.assertEqual(UserTournamentScore.objects.get(user=self.user).scores, [3])
        self.user.refresh_from_db()
        self.assertEqual(self.user.score, 3)

    def test_recompute_async(self):
        with patch("django_q.tasks.async_task", return_value="task-5"):
            output = self.run_command(
                "recompute_tournament_scores", str(self.tournament.pk), "--async"
            )
        self.assertIn("Resync queued (task task-5)", output)

    def test_recompute_async_rebuild_is_rejected(self):
        with self.assertRaises(CommandError):
            self.run_command(
                "recompute_tournament_scores", str(self.tournament.pk), "--async", "--rebuild"
            )

    def test_recompute_invalid_tournament(self):
        with self.assertRaises(CommandError) as cm:
            self.run_command("recompute_tournament_scores", "99999")
        self.assertIn("does not exist", str(cm.exception))

    def test_recompute_failure(self):
        with patch.object(
            User, "update_global_score", autospec=True, side_effect=UpdateError("down")
        ):
            with self.assertRaises(CommandError):
                self.run_command("recompute_tournament_scores", str(self.tournament.pk))


class BlockMatchPredictionsCommandTest(CommandTestCase):
    def test_block_predictions(self):
        output = self.run_command("block_match_predictions", str(self.tournament.pk), "1")

        self.assertIn("Predictions blocked for Match 1", output)
        self.match.refresh_from_db()
        self.assertFalse(self.match.can_predict)

    def test_block_unknown_match(self):
        with self.assertRaises(CommandError):
            self.run_command("block_match_predictions", str(self.tournament.pk), "9")
