from .score_updates import (
    recompute_tournament,
    rebuild_score_ledgers,
    run_aggregation,
    sync_scores_task,
    sync_tournament_scores,
    update_scores_task,
)

__all__ = [
    "recompute_tournament",
    "rebuild_score_ledgers",
    "run_aggregation",
    "sync_scores_task",
    "sync_tournament_scores",
    "update_scores_task",
]
