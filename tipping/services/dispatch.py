"""
Fire-and-forget submission of score jobs to the django-q worker queue.

Payloads are flat string maps, each value being a JSON document describing an
entity (tournament, match). Workers decode them with `decode_payload` and load
the entities again before doing any work, so a payload never carries stale
ledger data.
"""
import json
import logging
from typing import Any, Dict, Optional

from decouple import config
from django.core.serializers.json import DjangoJSONEncoder

from tipping.constants import TASK_ENDPOINTS
from tipping.utils.scoring_engine import DispatchError, ResultValidationError

logger = logging.getLogger(__name__)


def serialize_tournament(tournament) -> Dict[str, Any]:
    return {"id": tournament.pk, "name": tournament.name}


def serialize_match(match) -> Dict[str, Any]:
    return {
        "id": match.pk,
        "id_number": match.id_number,
        "result_1": match.result_1,
        "result_2": match.result_2,
        "is_finished": match.is_finished,
    }


def build_payload(tournament, match=None, force=False) -> Dict[str, str]:
    payload = {
        "tournament": json.dumps(serialize_tournament(tournament), cls=DjangoJSONEncoder)
    }
    if match is not None:
        payload["match"] = json.dumps(serialize_match(match), cls=DjangoJSONEncoder)
    if force:
        payload["force"] = json.dumps(True)
    return payload


def decode_payload(payload: Dict[str, str]) -> Dict[str, Any]:
    """
    Decodes a task payload back into dictionaries.

    Raises:
        ResultValidationError: If the payload is not a map of JSON documents
            or the tournament is missing
    """
    if not isinstance(payload, dict):
        raise ResultValidationError(f"Task payload must be a map, got {type(payload).__name__}")

    decoded = {}
    for key, value in payload.items():
        try:
            decoded[key] = json.loads(value)
        except (TypeError, ValueError) as e:
            raise ResultValidationError(f"Unable to decode '{key}' from payload: {e}") from e

    tournament = decoded.get("tournament")
    if not isinstance(tournament, dict) or "id" not in tournament:
        raise ResultValidationError("Task payload has no tournament id")
    match = decoded.get("match")
    if match is not None and (not isinstance(match, dict) or "id" not in match):
        raise ResultValidationError("Task payload has no match id")
    return decoded


class TaskDispatcher:
    def __init__(self):
        self.async_enabled = config("SCORES_ASYNC_ENABLED", default=True, cast=bool)
        self.group = config("SCORES_TASK_GROUP", default="scores")

    def enqueue(self, endpoint: str, payload: Dict[str, str]) -> Optional[str]:
        """
        Submits a task for `endpoint` with `payload` as its only argument.

        Delivery is at least once and unordered across calls.

        Returns:
            str: The django-q task id

        Raises:
            DispatchError: If the endpoint is unknown or the queue rejects the task
        """
        func = TASK_ENDPOINTS.get(endpoint)
        if func is None:
            raise DispatchError(f"Unknown task endpoint '{endpoint}'")

        from django_q.tasks import async_task

        try:
            task_id = async_task(func, payload, group=self.group)
        except Exception as e:
            logger.error(f"Unable to add {endpoint} task to the queue: {e}", exc_info=True)
            raise DispatchError(f"Unable to add {endpoint} task to the queue: {e}") from e

        logger.info(f"Added {endpoint} task {task_id} to the queue")
        return task_id


dispatcher = TaskDispatcher()
