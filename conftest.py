import os

# Settings are read once and cached; pin the test environment before any
# application module is imported.
os.environ["ENVIRONMENT"] = "local"
os.environ["BACKEND_URL"] = "http://backend.test"
os.environ["STOREFRONT_URL"] = "https://shop.test"
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret"
os.environ["MANAGER_ROLE"] = "manager"
os.environ.pop("REDIS_URL", None)

from libs.common.config import get_settings  # noqa: E402

get_settings.cache_clear()
