"""Constants for Gmail Newsletter Importer."""

from pathlib import Path

# --- Config paths ---
CONFIG_DIR = Path.home() / ".gmail-newsletter-importer"
CLIENT_SECRET_PATH = CONFIG_DIR / "client_secret.json"
TOKENS_DIR = CONFIG_DIR / "tokens"
DB_PATH = CONFIG_DIR / "importer.db"

# --- Gmail API ---
SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
LIST_PAGE_SIZE = 100  # message IDs per list page
FETCH_CHUNK_SIZE = 10  # requests per BatchHttpRequest
FETCH_CHUNK_DELAY = 0.25  # seconds between chunks (~40 req/s)
METADATA_HEADERS = ["From", "Subject", "List-Unsubscribe", "List-Id", "Precedence", "Message-ID", "Date"]

# --- Retry ---
RATE_LIMIT_RETRIES = 3
RETRY_BASE_DELAY = 1  # seconds, doubled per attempt
RETRY_MAX_DELAY = 30

# --- Scan ---
SCAN_MAX_PAGES = 10
SCAN_BATCH_SIZE = 50
SAMPLE_SUBJECTS_LIMIT = 5

# --- Import ---
IMPORT_BATCH_SIZE = 10
IMPORT_SOURCE_TAG = "gmail"

# --- Scoring weights ---
WEIGHT_LIST_UNSUBSCRIBE = 50
WEIGHT_KNOWN_DOMAIN = 30
WEIGHT_LIST_ID = 30
WEIGHT_PRECEDENCE_BULK = 10
MAX_SCORE = 100

# --- Scoring thresholds ---
NEWSLETTER_THRESHOLD = 30
SCORE_NEWSLETTER = 50

# --- Known newsletter platforms ---
KNOWN_NEWSLETTER_DOMAINS = [
    "substack.com",
    "buttondown.email",
    "beehiiv.com",
    "convertkit.com",
    "mailchimp.com",
    "ghost.io",
    "revue.co",
    "getrevue.co",
    "sendfox.com",
    "mailerlite.com",
    "campaignmonitor.com",
    "constantcontact.com",
    "sendgrid.net",
    "klaviyo.com",
    "drip.com",
    "activecampaign.com",
    "aweber.com",
    "getresponse.com",
    "moosend.com",
    "emailoctopus.com",
    "tinyletter.com",
    "curated.co",
    "letterhead.email",
    "paragraph.xyz",
    "mirror.xyz",
]

# Gmail search has no header operator for List-Unsubscribe, so the scan
# pre-filters on platforms and keywords and lets the scorer decide.
NEWSLETTER_SEARCH_QUERY = " OR ".join(
    [
        "from:substack.com",
        "from:buttondown.email",
        "from:beehiiv.com",
        "from:convertkit.com",
        "from:mailchimp.com",
        "from:ghost.io",
        "from:revue.co",
        "from:tinyletter.com",
        "from:sendinblue.com",
        "from:mailerlite.com",
        "from:getrevue.co",
        "from:substackcdn.com",
        "unsubscribe",
        "newsletter",
        "category:promotions",
    ]
)

# --- Content normalization ---
MIN_TRACKING_HEX_LENGTH = 32
UNSUBSCRIBE_PLACEHOLDER = "UNSUBSCRIBE"
GREETING_PLACEHOLDER = "USER"
HEX_PLACEHOLDER = "HASH"

# --- Plans ---
PLAN_FREE = "free"
PLAN_PRO = "pro"
FREE_PREVIEW_SENDER_LIMIT = 3
FREE_PREVIEW_EMAIL_LIMIT = 50

# --- Folders ---
UNKNOWN_SENDER_FOLDER = "Unknown Sender"
