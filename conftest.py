"""Global pytest configuration."""

import os

# Use the in-memory store unless a test builds its own SQL container
os.environ["DATABASE_URL"] = ""
os.environ.setdefault("PROVIDER_FALLBACK_ENABLED", "false")
