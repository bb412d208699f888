import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from crawlbox.utils.env_loader import load_environment


@pytest.fixture(autouse=True)
def load_dotenv_defaults(monkeypatch):
    """Ensure every test starts from the same configuration baseline."""

    # Clear key variables so tests always use the .env/config.yaml baseline
    # unless they explicitly override values via monkeypatch.
    for key in [
        "CRAWLER_USER_AGENT",
        "CRAWLBOX_CONFIG",
        "CRAWLBOX_ENV_FILE",
        "MONGO_URL",
        "MONGO_URI",
        "MAX_DEPTH",
        "MAX_PAGES",
        "CACHE_TTL",
        "SANDBOX_TIMEOUT",
        "BROWSER_BACKEND",
    ]:
        monkeypatch.delenv(key, raising=False)

    load_environment(override=True)

    yield

    # Clean up to avoid leaking state between tests.
    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)
