"""xcred - X profile credibility engine."""

__version__ = "0.1.0"

from xcred.config import EngineConfig, SettingsSnapshot
from xcred.engine import ProfileEngine
from xcred.models.profile import ProfileRecord
from xcred.models.score import CredibilityScore
from xcred.models.task import BudgetInfo, ValidationTask
from xcred.scoring import CredibilityScorer

__all__ = [
    # Main interface
    "ProfileEngine",
    "EngineConfig",
    "SettingsSnapshot",
    # Models
    "ProfileRecord",
    "CredibilityScore",
    "ValidationTask",
    "BudgetInfo",
    # Scoring
    "CredibilityScorer",
    "__version__",
]
