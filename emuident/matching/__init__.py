"""Identity matching - sources, orchestration and best-match resolution."""

from .orchestrator import MatchOrchestrator
from .rate_limiter import RateLimiter
from .similarity import MatchEngine

__all__ = ["MatchOrchestrator", "MatchEngine", "RateLimiter"]
