"""
Configuration constants for the application.
"""
import os
from pathlib import Path

# Load environment variables from .env file if it exists
try:
    from dotenv import load_dotenv
    env_path = Path(__file__).resolve().parent.parent.parent / '.env'
    load_dotenv(dotenv_path=env_path)
except ImportError:
    # python-dotenv not installed, read from os.environ directly
    pass

# Main Admin User ID - IMMUTABLE CONSTANT
# The user with this ID is always privileged, whatever role is stored on the account.
MAIN_ADMIN_USER_ID = int(os.getenv("MAIN_ADMIN_USER_ID", "1"))

# Roles allowed to change fluency levels and run the bulk backfill.
PRIVILEGED_ROLES = frozenset(
    r.strip()
    for r in os.getenv("PRIVILEGED_ROLES", "teacher,coadmin,admin").split(",")
    if r.strip()
)

# Prefix of every certificate number: PREFIX-YEAR-LEVEL-NNNNNN
CERTIFICATE_PREFIX = os.getenv("CERTIFICATE_PREFIX", "DLA").strip() or "DLA"

# Actor recorded for changes the system makes on its own (signup, lazy backfill)
SYSTEM_ACTOR = "system"

ENABLE_DEBUG_ROUTES = os.getenv("ENABLE_DEBUG_ROUTES", "0") == "1"
