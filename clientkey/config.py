"""ClientKey billing engine configuration — loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

REPO_ROOT = Path(__file__).resolve().parent.parent

# HTML layouts for outbound email
EMAIL_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates" / "emails"

# Supabase
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")

# Stripe
STRIPE_API_KEY = os.environ.get("STRIPE_API_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
STRIPE_EARLY_BIRD_PRICE_ID = os.environ.get("STRIPE_EARLY_BIRD_PRICE_ID", "")
STRIPE_REGULAR_PRICE_ID = os.environ.get("STRIPE_REGULAR_PRICE_ID", "")
STRIPE_ADDON_PRICE_ID = os.environ.get("STRIPE_ADDON_PRICE_ID", "")

# Monthly prices in cents
EARLY_BIRD_PRICE_CENTS = int(os.environ.get("EARLY_BIRD_PRICE_CENTS", "1900"))
REGULAR_PRICE_CENTS = int(os.environ.get("REGULAR_PRICE_CENTS", "4900"))

# Resend (email sending)
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
RESEND_FROM_EMAIL = os.environ.get("RESEND_FROM_EMAIL", "onboarding@resend.dev")
RESEND_FROM_NAME = os.environ.get("RESEND_FROM_NAME", "ClientKey")

# Shared secret for scheduler → job endpoints
CRON_SECRET = os.environ.get("CRON_SECRET", "")

# Public base URL of this service (tracking pixel + click links)
PUBLIC_URL = os.environ.get("PUBLIC_URL", "http://localhost:8000").rstrip("/")

# Front end (checkout redirects, assessment links)
APP_URL = os.environ.get("APP_URL", "http://localhost:5173").rstrip("/")
BILLING_PORTAL_URL = os.environ.get("BILLING_PORTAL_URL", "https://billing.stripe.com/p/login")

# In-process APScheduler (off when an external cron drives /jobs/*)
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "").lower() in ("1", "true", "yes")

# Server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
