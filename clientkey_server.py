#!/usr/bin/env python3
"""ClientKey billing service.

Launch: python3 clientkey_server.py
Serves at http://0.0.0.0:8000 (or PORT env var)
"""

import logging
import os

import uvicorn

from clientkey.config import HOST, PORT


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 60)
    print("  ClientKey — Billing & Lifecycle Service")
    print("=" * 60)

    missing = [name for name in (
        "SUPABASE_URL", "SUPABASE_SERVICE_KEY", "STRIPE_API_KEY",
        "STRIPE_WEBHOOK_SECRET", "RESEND_API_KEY", "CRON_SECRET",
    ) if not os.environ.get(name)]
    if missing:
        print("\n  WARNING: missing environment variables:")
        for name in missing:
            print(f"    {name}")
        print("  Continuing anyway for local development...\n")

    url = f"http://{HOST}:{PORT}"
    print(f"Starting server on {url}")
    print("  Press Ctrl+C to stop\n")

    from clientkey.app import create_app
    app = create_app()
    uvicorn.run(app, host=HOST, port=PORT, log_level="info")


if __name__ == "__main__":
    main()
