# Scoring constants
from typing import Dict

# Points awarded per prediction
EXACT_RESULT_POINTS: int = 3
TREND_POINTS: int = 1
MISSED_POINTS: int = 0

# Possible values of a single score ledger entry
SCORE_VALUES = (MISSED_POINTS, TREND_POINTS, EXACT_RESULT_POINTS)

# Match trends
HOME_WIN: str = "home"
AWAY_WIN: str = "away"
TIE: str = "tie"

# Async dispatch endpoints mapped to django-q task functions
UPDATE_SCORES_ENDPOINT: str = "update_scores"
SYNC_SCORES_ENDPOINT: str = "sync_scores"

TASK_ENDPOINTS: Dict[str, str] = {
    UPDATE_SCORES_ENDPOINT: "tipping.tasks.score_updates.update_scores_task",
    SYNC_SCORES_ENDPOINT: "tipping.tasks.score_updates.sync_scores_task",
}
