from .core import (
    Side,
    Stage,
    Team,
    Tournament,
    User,
    UserManager,
)
from .match import (
    Match,
    Prediction,
    PredictionManager,
)
from .scoring import (
    LedgerLookup,
    LedgerState,
    TeamTournamentAccuracy,
    UserTournamentScore,
)

__all__ = [
    "User",
    "UserManager",
    "Tournament",
    "Stage",
    "Side",
    "Team",
    "Match",
    "Prediction",
    "PredictionManager",
    "LedgerLookup",
    "LedgerState",
    "UserTournamentScore",
    "TeamTournamentAccuracy",
]
