"""Application configuration.

Most configuration is set via environment variables.

For local development, use a .env file to set
environment variables.
"""

import os

from environs import Env

env = Env()
env.read_env()

# Model alias table
MODEL_CONFIG_PATH = env.str(
    "MODEL_CONFIG_PATH",
    default=os.path.join(os.path.dirname(__file__), "models.yaml")
)

ENV = env.str("FLASK_ENV", default="production")
DEBUG = ENV == "development"
LOG_LEVEL = env.log_level("LOG_LEVEL", "INFO")
LOG_CONTEXT = env.bool("LOG_CONTEXT", False)
LOG_COMPLETION = env.bool("LOG_COMPLETION", False)

HOST = env.str("HOST", "0.0.0.0")
PORT = env.int("PORT", 17080)

# Inbound authentication; empty disables it
SERVICE_API_KEY = env.str("SERVICE_API_KEY", "")

# Upstream
BASE_URL = env.str("BASE_URL", "https://a0ai-api-sg.byteintlapi.com").rstrip("/")
TOKEN_BASE_URL = (env.str("TOKEN_BASE_URL", "") or BASE_URL).rstrip("/")
APP_ID = env.str("APP_ID", "")
CLIENT_ID = env.str("CLIENT_ID", "")
USER_ID = env.str("USER_ID", "")
REFRESH_TOKEN = env.str("REFRESH_TOKEN", "")
# A fixed upstream token; disables refresh-token exchange entirely
UPSTREAM_TOKEN = env.str("UPSTREAM_TOKEN", "")
IDE_VERSION = env.str("IDE_VERSION", "1.2.10")
IDE_VERSION_CODE = env.str("IDE_VERSION_CODE", "20250325")
UPSTREAM_LOCALE = env.str("UPSTREAM_LOCALE", "zh-cn")
UPSTREAM_CONNECT_TIMEOUT = env.float("UPSTREAM_CONNECT_TIMEOUT", 30.0)

# Optional Redis used to persist the rotating refresh token
REDIS_URL = env.str("REDIS_URL", "")

TOKEN_AUTO_REFRESH = env.bool("TOKEN_AUTO_REFRESH", True)
TOKEN_REFRESH_INTERVAL = env.float("TOKEN_REFRESH_INTERVAL", 300.0)

DEVICE_ROTATION = env.bool("DEVICE_ROTATION", False)

QUEUE_MAX_RETRIES = env.int("QUEUE_MAX_RETRIES", 3)
QUEUE_RETRY_DELAY = env.float("QUEUE_RETRY_DELAY", 3.0)
QUEUE_NOTICE_INTERVAL = env.float("QUEUE_NOTICE_INTERVAL", 5.0)

AUTO_CONTINUE = env.bool("AUTO_CONTINUE", False)
AUTO_CONTINUE_MAX_PASSES = env.int("AUTO_CONTINUE_MAX_PASSES", 3)
AUTO_CONTINUE_PROMPT = env.str("AUTO_CONTINUE_PROMPT", "继续")
