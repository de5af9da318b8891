import os
from dotenv import load_dotenv

load_dotenv()

APP_NAME = os.getenv("APP_NAME", "dimely-billing-engine")
DEPLOYMENT_ENV = os.getenv("DEPLOYMENT_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Recurly Configuration
RECURLY_API_KEY = os.getenv("RECURLY_API_KEY", "mock-api-key")
RECURLY_BASE_URL = os.getenv("RECURLY_BASE_URL", "https://v3.recurly.com")
RECURLY_USE_MOCK_DATA = (
    os.getenv(
        "RECURLY_USE_MOCK_DATA",
        "false" if DEPLOYMENT_ENV == "production" else "true",
    ).lower()
    == "true"
)
RECURLY_MOCK_DATA_PATH = os.getenv(
    "RECURLY_MOCK_DATA_PATH",
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "mock-apis"),
)

# Performance Configuration
RECURLY_API_RETRY_ATTEMPTS = int(os.getenv("RECURLY_API_RETRY_ATTEMPTS", "1"))
RECURLY_API_RETRY_BACKOFF_FACTOR = float(
    os.getenv("RECURLY_API_RETRY_BACKOFF_FACTOR", "0.5")
)
RECURLY_API_CONNECTION_POOL_SIZE = int(
    os.getenv("RECURLY_API_CONNECTION_POOL_SIZE", "10")
)
RECURLY_API_REQUEST_TIMEOUT = int(os.getenv("RECURLY_API_REQUEST_TIMEOUT", "10"))

