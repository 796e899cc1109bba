"""
Centralized Constants for the WhatsApp Connect backend.
All hardcoded values should be defined here for easy maintenance.
"""

# ============================================
# API TIMEOUTS (in seconds)
# ============================================
TIMEOUT_GRAPH_OAUTH = 20.0        # OAuth token exchange

# ============================================
# RETRY SETTINGS (tenacity)
# ============================================
MAX_RETRY_ATTEMPTS = 3
RETRY_MIN_WAIT_SECONDS = 2
RETRY_MAX_WAIT_SECONDS = 10

# ============================================
# PAGINATION
# ============================================
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

# ============================================
# WEBHOOK RECONCILIATION
# ============================================
RECONCILE_BATCH_SIZE = 100        # Unattributed events replayed per run

# ============================================
# DATABASE POOL SETTINGS
# ============================================
DB_POOL_SIZE = 5
DB_MAX_OVERFLOW = 10
DB_POOL_RECYCLE = 300
