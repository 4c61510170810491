"""
Tests for task dispatching and the match result entry points.
"""
import json
import os
from unittest.mock import patch

from django.test import SimpleTestCase, TestCase

from tipping.constants import SYNC_SCORES_ENDPOINT, TASK_ENDPOINTS, UPDATE_SCORES_ENDPOINT
from tipping.models import Match, Prediction, Tournament, User, UserTournamentScore
from tipping.services import (
    TaskDispatcher,
    block_match_predictions,
    build_payload,
    decode_payload,
    dispatcher,
    on_match_finalized,
    request_scores_sync,
)
from tipping.utils.scoring_engine import (
    DispatchError,
    NotFoundError,
    PredictionLockedError,
    ResultValidationError,
)


class DecodePayloadTest(SimpleTestCase):
    def test_decode_payload(self):
        payload = {
            "tournament": json.dumps({"id": 1, "name": "World Cup"}),
            "match": json.dumps({"id": 4, "id_number": 2}),
        }
        data = decode_payload(payload)
        self.assertEqual(data["tournament"]["id"], 1)
        self.assertEqual(data["match"]["id_number"], 2)

    def test_payload_must_be_a_map(self):
        with self.assertRaises(ResultValidationError):
            decode_payload(["tournament"])

    def test_payload_values_must_be_json(self):
        with self.assertRaises(ResultValidationError):
            decode_payload({"tournament": "{broken"})

    def test_payload_without_tournament(self):
        with self.assertRaises(ResultValidationError):
            decode_payload({"match": json.dumps({"id": 1})})

    def test_payload_with_match_without_id(self):
        with self.assertRaises(ResultValidationError):
            decode_payload({"tournament": json.dumps({"id": 1}), "match": json.dumps({})})


class TaskDispatcherTest(SimpleTestCase):
    def test_enqueue(self):
        task_dispatcher = TaskDispatcher()
        payload = {"tournament": json.dumps({"id": 1})}

        with patch("django_q.tasks.async_task", return_value="task-1") as mock_async:
            task_id = task_dispatcher.enqueue(UPDATE_SCORES_ENDPOINT, payload)

        self.assertEqual(task_id, "task-1")
        mock_async.assert_called_once_with(
            TASK_ENDPOINTS[UPDATE_SCORES_ENDPOINT], payload, group=task_dispatcher.group
        )

    def test_enqueue_unknown_endpoint(self):
        with patch("django_q.tasks.async_task") as mock_async:
            with self.assertRaises(DispatchError):
                TaskDispatcher().enqueue("delete_everything", {})
        mock_async.assert_not_called()

    def test_enqueue_failure(self):
        with patch("django_q.tasks.async_task", side_effect=ConnectionError("broker down")):
            with self.assertRaises(DispatchError) as cm:
                TaskDispatcher().enqueue(SYNC_SCORES_ENDPOINT, {})
        self.assertIn("broker down", str(cm.exception))

    def test_configuration_from_environment(self):
        with patch.dict(
            os.environ, {"SCORES_ASYNC_ENABLED": "False", "SCORES_TASK_GROUP": "tipping"}
        ):
            task_dispatcher = TaskDispatcher()
        self.assertFalse(task_dispatcher.async_enabled)
        self.assertEqual(task_dispatcher.group, "tipping")

    def test_endpoints_point_to_tasks(self):
        for endpoint in (UPDATE_SCORES_ENDPOINT, SYNC_SCORES_ENDPOINT):
            with self.subTest(endpoint=endpoint):
                self.assertTrue(TASK_ENDPOINTS[endpoint].startswith("tipping.tasks."))


class MatchResultsTest(TestCase):
    def setUp(self):
        self.tournament = Tournament.objects.create(name="World Cup")
        self.user = User.objects.create_user(email="alice@test.com", username="alice")
        self.tournament.join(self.user)
        self.match = Match.objects.create(tournament=self.tournament, id_number=3)

    def test_build_payload(self):
        payload = build_payload(self.tournament, self.match, force=True)

        data = decode_payload(payload)
        self.assertEqual(data["tournament"]["id"], self.tournament.pk)
        self.assertEqual(data["match"]["id"], self.match.pk)
        self.assertIs(data["force"], True)
        self.assertNotIn("force", build_payload(self.tournament))

    @patch.object(dispatcher, "async_enabled", True)
    def test_on_match_finalized_queues_update(self):
        with patch("django_q.tasks.async_task", return_value="task-9") as mock_async:
            outcome = on_match_finalized(self.tournament.pk, 3, 2, 1)

        self.assertEqual(outcome["status"], "queued")
        self.assertEqual(outcome["task_id"], "task-9")
        func, payload = mock_async.call_args.args
        self.assertEqual(func, TASK_ENDPOINTS[UPDATE_SCORES_ENDPOINT])
        self.assertEqual(decode_payload(payload)["match"]["id"], self.match.pk)

        self.match.refresh_from_db()
        self.assertTrue(self.match.is_finished)
        self.assertIsNone(self.match.aggregated_at)

    def test_on_match_finalized_inline(self):
        Prediction.objects.predict(self.user, self.match, 2, 1)

        outcome = on_match_finalized(self.tournament.pk, 3, "2", "1", run_async=False)

        self.assertEqual(outcome["status"], "success")
        self.assertEqual(outcome["report"].failures, [])
        ledger = UserTournamentScore.objects.get(user=self.user, tournament=self.tournament)
        self.assertEqual(ledger.scores, [3])

    def test_on_match_finalized_twice_inline(self):
        on_match_finalized(self.tournament.pk, 3, 2, 1, run_async=False)

        outcome = on_match_finalized(self.tournament.pk, 3, 2, 1, run_async=False)

        self.assertEqual(outcome["status"], "skipped")

    def test_on_match_finalized_unknown_tournament(self):
        with self.assertRaises(NotFoundError):
            on_match_finalized(99999, 3, 2, 1, run_async=False)

    def test_on_match_finalized_unknown_match(self):
        with self.assertRaises(NotFoundError):
            on_match_finalized(self.tournament.pk, 42, 2, 1, run_async=False)

    def test_on_match_finalized_invalid_result(self):
        with self.assertRaises(ResultValidationError):
            on_match_finalized(self.tournament.pk, 3, 2, None, run_async=False)
        self.match.refresh_from_db()
        self.assertFalse(self.match.is_finished)

    @patch.object(dispatcher, "async_enabled", True)
    def test_on_match_finalized_dispatch_failure(self):
        with patch("django_q.tasks.async_task", side_effect=RuntimeError("down")):
            with self.assertRaises(DispatchError):
                on_match_finalized(self.tournament.pk, 3, 2, 1)

    def test_block_match_predictions(self):
        block_match_predictions(self.tournament.pk, 3)

        with self.assertRaises(PredictionLockedError):
            Prediction.objects.predict(self.user, self.match, 1, 0)

    def test_block_unknown_match(self):
        with self.assertRaises(NotFoundError):
            block_match_predictions(self.tournament.pk, 42)

    def test_request_scores_sync(self):
        with patch("django_q.tasks.async_task", return_value="task-2") as mock_async:
            self.assertEqual(request_scores_sync(self.tournament.pk), "task-2")

        func, payload = mock_async.call_args.args
        self.assertEqual(func, TASK_ENDPOINTS[SYNC_SCORES_ENDPOINT])
        self.assertNotIn("match", payload)
