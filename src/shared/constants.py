"""Shared constants across the application."""

# Tracking event names
EVENT_IMPRESSION = "impression"
EVENT_CLICK = "click"
EVENT_RECOMMENDATION_SERVED = "ml_recommendation_served"

LEARNING_EVENTS = [
    EVENT_RECOMMENDATION_SERVED,
    EVENT_IMPRESSION,
    EVENT_CLICK,
]

# Empty-response reason codes (recommendations)
REASON_DISABLED = "disabled"
REASON_THRESHOLD_MET = "threshold_met"
REASON_NO_CONTEXT = "no_context"
REASON_PRIMARY_FAILURE = "primary_system_failure"

# Empty-response reason codes (bundles)
REASON_INVALID_PARAMS = "invalid_params"
REASON_INVALID_PRODUCT = "invalid_product"
REASON_DISABLED_PAGE = "disabled_page"
REASON_NO_VARIANTS = "no_variants"
REASON_NO_BUNDLES = "no_bundles"

# Recommendation limits
DEFAULT_RECOMMENDATION_LIMIT = 6
MAX_RECOMMENDATION_LIMIT = 12

# Association mining
DECAY_HALF_LIFE_DAYS = 60.0
ORDER_LOOKBACK_DAYS = 90
MAX_ORDERS_PER_REQUEST = 200

# Candidate scoring
LIFT_CAP = 2.0
LIFT_WEIGHT = 0.6
POPULARITY_WEIGHT = 0.4
POPULARITY_MASS_BAND = 0.05

# CTR re-ranking (Laplace smoothing)
CTR_ALPHA = 1
CTR_BETA = 20
BASELINE_CTR = 0.05
CTR_WEIGHT = 0.35
CTR_MULTIPLIER_MIN = 0.85
CTR_MULTIPLIER_MAX = 1.25
CTR_LOOKBACK_DAYS = 14

# Guardrails
PRICE_GAP_LOW = 0.5
PRICE_GAP_HIGH = 2.0
CANDIDATE_POOL_SIZE = 24

# Blending
COLD_START_ORDER_THRESHOLD = 50
COLD_START_SHARE = 0.7
AI_FIRST_SIGNAL_SHARE = 0.7
BALANCED_SIGNAL_SHARE = 0.4

# Serving-side performance adjustment
HIGH_CONFIDENCE = 0.7
LOW_CONFIDENCE = 0.3
HIGH_CONFIDENCE_BOOST = 1.3
LOW_CONFIDENCE_PENALTY = 0.7

# Daily learning
LEARNING_WINDOW_DAYS = 30
MIN_IMPRESSIONS = 10
BLACKLIST_MIN_IMPRESSIONS = 100
BLACKLIST_CVR = 0.005
BLACKLIST_CTR = 0.03
HIGH_PERFORMER_CVR = 0.02
SAMPLE_SIZE_SATURATION = 100

# Co-purchase similarity (weekly job)
SIMILARITY_LOOKBACK_DAYS = 90
SIMILARITY_MAX_ORDERS = 1000
SIMILARITY_MIN_CO_PURCHASES = 2
SIMILARITY_MIN_SCORE = 0.1
SIMILARITY_JACCARD_WEIGHT = 0.6
SIMILARITY_FREQUENCY_WEIGHT = 0.4
SIMILARITY_TOP_N = 20

# Bundles
MAX_BUNDLE_COMPLEMENTS = 2
BUNDLE_CANDIDATE_POOL = 4
CATALOG_FALLBACK_POOL = 50

# Cache
RECOMMENDATION_CACHE_TTL_SECONDS = 60
