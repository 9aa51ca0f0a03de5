
# Configurations for the MCP trading assistant
RETRIES = 3  # number of retries for API requests
BACK_OFF_FACTOR = 2  # exponential backoff factor for retries in seconds
REQUEST_TIMEOUT_SECONDS = 10  # upper bound on every HTTP call (token refresh and data fetch included)

# Upstox endpoints
UPSTOX_BASE_URL = "https://api.upstox.com/v2"
UPSTOX_AUTH_PATH = "/login/authorization/dialog"
UPSTOX_TOKEN_PATH = "/login/authorization/token"

# Configuration for the session / token lifecycle
TOKEN_REFRESH_MARGIN_SECONDS = 5 * 60  # refresh when the access token has less than this left
DEFAULT_TOKEN_TTL_SECONDS = 24 * 60 * 60  # used when the token endpoint omits expires_in
TOKEN_FILE_PATH = "token.json"
DB_PATH = "data/trading.db"

# Configuration for MCP (Most Connected Pivot) detection
CONNECTION_TOLERANCE = 0.001  # relative distance for a point to count as connected to a pivot (0.1%)

# Configuration for the MCP strategy
MCP_DEVIATION_THRESHOLD = 0.005  # current price must be within 0.5% of the MCP to trade
RECENT_WINDOW = 10  # number of latest points used to judge the trend near the MCP
DEFAULT_LOOKBACK_DAYS = 30
DEFAULT_ORDER_TYPE = "LIMIT"
DEFAULT_VALIDITY = "DAY"
DEFAULT_PRODUCT = "D"  # Upstox delivery product

# Configuration for analysis reports
ANALYSIS_DIR = "mcp_analysis"
ANALYSIS_TIMEFRAMES = ("day", "30minute", "1minute")
STRONG_MCP_CONNECTIONS = 5  # pivots with more connections are listed as strongest MCPs
HIGH_CONFIDENCE_CONNECTIONS = 10
RECOMMENDATION_DISTANCE = 0.01  # daily MCP recommendations only within 1%
