"""
Configuration constants for the reelrank recommendation engine.

This module centralizes all magic numbers and tunable parameters.
Operational knobs can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Database Configuration
DB_PATH = Path(os.environ.get("REELRANK_DB", "data/reelrank.db"))
DB_BUSY_RETRIES = 3

# Provider credentials (an adapter without credentials reports itself inactive)
TMDB_API_KEY = os.environ.get("TMDB_API_KEY")
TRAKT_CLIENT_ID = os.environ.get("TRAKT_CLIENT_ID")
TMDB_BASE_URL = "https://api.themoviedb.org/3"
TRAKT_BASE_URL = "https://api.trakt.tv"

# HTTP
HTTP_TIMEOUT = 8.0  # Per-request timeout in seconds
USER_AGENT = "reelrank/1.0"

# Aggregator Configuration
AGGREGATOR_TIMEOUT = _get_float_env("REELRANK_AGGREGATOR_TIMEOUT", 20.0, min_val=1.0)
AGGREGATOR_MAX_CONCURRENT = _get_int_env("REELRANK_MAX_CONCURRENT", 4, min_val=1)
DEFAULT_AGGREGATE_LIMIT = 50
SEEDS_PER_SOURCE = 5
TMDB_RESULTS_PER_SEED = 10
TRAKT_RESULTS_PER_SEED = 15
SEED_MIN_RATING = 4.0

# Source reliability weights
SOURCE_WEIGHTS = {
    'tmdb': 0.9,
    'tastedive': 1.35,
    'trakt': 1.4,
    'tuimdb': 0.85,
    'watchmode': 0.6,
}
DEFAULT_SOURCE_WEIGHT = 1.0

# Per-signal confidence ("recommended" beats "similar")
SIGNAL_CONFIDENCE = {
    'tmdb_similar': 0.85,
    'tmdb_recommended': 0.9,
    'tastedive': 0.88,
    'trakt_related': 0.9,
    'watchmode_trending': 0.6,
}

# Consensus scoring
CONSENSUS_BONUS_MAX = 0.3
QUALITY_SOURCE_BONUS = {
    'trakt': 0.15,
    'tastedive': 0.12,
}
CONSENSUS_HIGH_MIN = 4
CONSENSUS_MEDIUM_MIN = 2

# Circuit breaker
PROVIDER_COOLDOWN_SECONDS = _get_float_env("REELRANK_PROVIDER_COOLDOWN", 900.0, min_val=1.0)
PROVIDER_TRIP_STATUS_CODES = (401, 403, 429)

# Metadata hydration
METADATA_WORKERS = _get_int_env("REELRANK_METADATA_WORKERS", 8, min_val=1)
METADATA_PACING_DELAY = _get_float_env("REELRANK_METADATA_DELAY", 0.1, min_val=0.0)

# Profile weight tiers: (min_rating, liked_weight, unliked_weight)
PROFILE_WEIGHT_TIERS = [
    (4.5, 2.5, 1.5),
    (4.0, 2.0, 1.2),
    (3.5, 1.5, 0.9),
    (2.5, 1.0, 0.3),
    (1.5, 0.7, 0.1),
    (0.0, 0.5, 0.0),
]
UNRATED_DEFAULT_RATING = 3.0
REWATCH_MULTIPLIER = 1.2

# Profile extraction
MAX_DIRECTORS_PER_FILM = 3
MAX_CAST_ORDER = 10
CAST_WEIGHT_MULTIPLIER = 0.5
NEGATIVE_RATING_THRESHOLD = 3.0
NEGATIVE_SAMPLE_CAP = 200
HIGHLY_RATED_THRESHOLD = 4.0
FAVORITE_THRESHOLD = 4.5
WATCHLIST_TOP_N = 10

PROFILE_TOP_N = {
    'genre': 12,
    'keyword': 15,
    'director': 12,
    'actor': 15,
    'decade': 5,
    'language': 5,
}

# Explicit feedback folded into profile builds
FEEDBACK_AVOID_PREFERENCE = 0.2
FEEDBACK_AVOID_MARGIN = 5
FEEDBACK_PREFER_PREFERENCE = 0.7
FEEDBACK_MIN_EVIDENCE = 3
FEEDBACK_PROFILE_SCALE = 2.0

# Subgenre classification (avoidance requires watched evidence)
SUBGENRE_AVOID_MIN_WATCHED = 10
SUBGENRE_AVOID_MAX_LIKE_RATIO = 0.2
SUBGENRE_PREFER_MIN_WATCH_RATIO = 0.15
SUBGENRE_PREFER_MIN_LIKE_RATIO = 0.6
SUBGENRE_MAJOR_GENRES = ['Action', 'Science Fiction', 'Horror', 'Comedy', 'Drama', 'Thriller']

# Cross-genre patterns
CROSS_GENRE_MAX_GENRES = 3
CROSS_GENRE_MIN_WATCHED = 3
CROSS_GENRE_KEYWORD_FACTOR = 0.2
CROSS_GENRE_MAX_EXAMPLES = 3

# Candidate scoring
MATCH_WEIGHTS = {
    'genre': 1.0,
    'director': 1.5,
    'actor': 0.5,
    'keyword': 0.4,
    'decade': 0.3,
    'language': 0.2,
}
MATCH_CAPS = {
    'genre': 3,
    'director': 2,
    'actor': 3,
    'keyword': 5,
    'decade': 1,
    'language': 1,
}
PERSONAL_MATCH_WEIGHT = 0.35
CROSS_GENRE_BOOST_WEIGHT = 0.25
WATCHLIST_INTENT_WEIGHT = 0.1
SEED_POSITIVE_BOOST = 0.25
AVOIDED_KEYWORD_MIN_MATCHES = 2
RUNTIME_TIGHT_RANGE = 60
RUNTIME_TOLERANCE = 30

# MMR reranking
MMR_LAMBDA_MIN = 0.15
MMR_LAMBDA_MAX = 0.5
MMR_TOPK_FACTOR_MIN = 2.5
MMR_TOPK_FACTOR_MAX = 4.0
DEFAULT_DISCOVERY = 50.0
DEFAULT_RESULT_COUNT = 20
SIMILARITY_WEIGHTS = {
    'genre': 0.5,
    'keyword': 0.3,
    'reason': 0.2,
}

# Exploration
EXPLORATION_RATE_DEFAULT = 0.15
EXPLORATION_RATE_MIN = 0.05
EXPLORATION_RATE_MAX = 0.30
EXPLORATION_LEARNING_RATE = 0.05
EXPLORATION_GOOD_AVG = 3.5
EXPLORATION_BAD_AVG = 3.0
EXPLORATION_RECENT_WINDOW = 20
EXPLORATION_TOP_GENRES = 3
EXPLORATION_BLOCK_PENALTY = 0.02

# Genre transitions (which genre a user enjoys moving to next)
TRANSITION_HISTORY_WINDOW = 50
TRANSITION_SUCCESS_RATING = 3.5
TRANSITION_MIN_COUNT = 3
TRANSITION_MIN_SUCCESS_RATE = 0.5
TRANSITION_SCORE_BONUS = 0.2

# Feedback learning
FEEDBACK_WEIGHT_DEFAULT = 1
FEEDBACK_WEIGHT_TARGETED = 2
FEEDBACK_WEIGHT_STRONG = 3
FEEDBACK_TOP_GENRES = 3
FEEDBACK_TOP_KEYWORDS = 5
FEEDBACK_TOP_CAST = 3
FEEDBACK_MAX_DIRECTORS = 2
FEEDBACK_MAX_RETRIES = _get_int_env("REELRANK_FEEDBACK_RETRIES", 3, min_val=1)
FEEDBACK_RETRY_DELAY = 0.5
FEEDBACK_QUEUE_MAXSIZE = 1000

# Experiment evaluation
AB_SIGNIFICANCE_LEVEL = 0.05
AB_CONFIDENCE_Z = 1.96
AB_MIN_SAMPLES = 2
AB_NORMAL_APPROX_DF = 100
AB_PVALUE_METHOD = os.environ.get("REELRANK_PVALUE_METHOD", "approx")
AB_CONTROL_NAME = "control"
AB_SHOWN_METRIC = "suggestions_shown"
