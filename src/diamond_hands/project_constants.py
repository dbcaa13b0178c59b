"""
Project-wide default parameters for the KOKO diamond hands airdrop.

These values define the public rules of the distribution.
Changing them changes eligibility and MUST be publicly announced.
Every value can be overridden through Settings (env or CLI).
"""

# Token mint (MAINNET)
TOKEN_MINT = "FsA54yL49WKs7rWoGv9sUcbSGWCWV756jTD349e6H2yW"

# Eligible balance window (UI units, i.e. already decimal-adjusted)
MIN_TOKENS = 50_000_000
MAX_TOKENS = 40_000_000_000  # 40B

# Holding period: MONTHS_REQUIRED * DAYS_PER_MONTH days without a single sale
MONTHS_REQUIRED = 3
DAYS_PER_MONTH = 30

# Output locations
OUTPUT_DIR = "."
CACHE_DIR = "./cache"
CACHE_FILENAME = "transactions.json"
CACHE_DEBOUNCE_S = 5.0

# Holder processing
BATCH_SIZE = 50
CONCURRENT_LIMIT = 5
PROGRESS_EVERY = 10

# Remote calls: exponential backoff, no jitter
RETRY_LIMIT = 3
RETRY_MIN_DELAY_S = 1.0
RETRY_MAX_DELAY_S = 3.0

# History fetching (getSignaturesForAddress caps a page at 1000)
SIGNATURE_PAGE_SIZE = 1000
PAGE_DELAY_S = 0.1
DETAIL_BATCH_SIZE = 50

# Share finalisation
SHARE_CHUNK_SIZE = 1000
SHARE_CHUNK_PAUSE_S = 0.1
