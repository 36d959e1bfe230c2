"""Constants for the accounts package."""

STORE_VERSION = 1

# Namespaced JWT claims issued by the OpenAI auth server
AUTH_CLAIM_NAMESPACE = "https://api.openai.com/auth"
PROFILE_CLAIM_NAMESPACE = "https://api.openai.com/profile"

# Epoch values above this are milliseconds
EPOCH_MILLIS_THRESHOLD = 1_000_000_000_000

DEFAULT_REFRESH_INTERVAL_MINUTES = 30
DEFAULT_PRIMARY_IDE = "Windsurf"

DEFAULT_FIVE_HOUR_LABEL = "5h"
DEFAULT_WEEKLY_LABEL = "Weekly"

# Owner-only permissions for credential material
PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700

# Event emitted to observers when the scheduler rewrites the current account
ACCOUNTS_UPDATED_EVENT = "accounts-updated"
