"""Runtime configuration, read from the environment."""

import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

PUB_API_URL = os.getenv("PUBRISK_PUB_API_URL", "https://pub.dev/api")
GITHUB_API_URL = os.getenv("PUBRISK_GITHUB_API_URL", "https://api.github.com")

# Raises the GitHub rate limit from 60 to 5000 requests/hour
GITHUB_TOKEN: Optional[str] = os.getenv("GITHUB_TOKEN")

CACHE_DIR = Path(os.getenv("PUBRISK_CACHE_DIR", str(Path.home() / ".pubrisk" / "cache")))

# Bump when the shape of cached payloads changes
CACHE_SCHEMA_VERSION = 1

PACKAGE_TTL = timedelta(hours=24)
REPO_HEALTH_TTL = timedelta(hours=12)
PROBE_TTL = timedelta(hours=6)

# pub.dev in-flight requests (caller can override per scan)
PUB_CONCURRENCY = int(os.getenv("PUBRISK_CONCURRENCY", "8"))
# Repositories fetched from GitHub at once
GITHUB_CONCURRENCY = 5

REQUEST_TIMEOUT = float(os.getenv("PUBRISK_REQUEST_TIMEOUT", "15"))
GITHUB_TIMEOUT = float(os.getenv("PUBRISK_GITHUB_TIMEOUT", "10"))
PROBE_TIMEOUT = float(os.getenv("PUBRISK_PROBE_TIMEOUT", "8"))

# Wall-clock ceilings for the enrichment stages of a scan
GITHUB_DEADLINE = float(os.getenv("PUBRISK_GITHUB_DEADLINE", "30"))
PROBE_DEADLINE = float(os.getenv("PUBRISK_PROBE_DEADLINE", "15"))

RETRY_ATTEMPTS = 4
RETRY_BASE_DELAY = 0.5
RETRY_FACTOR = 1.5
RATE_LIMIT_FACTOR = 4.0

DART_SDK_OVERRIDE: Optional[str] = os.getenv("PUBRISK_DART_SDK")

USER_AGENT = "pubrisk (+https://github.com/pubrisk/pubrisk)"
