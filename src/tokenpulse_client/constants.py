"""Shared provider API constants."""

OPENROUTER_BASE_URL = "https://openrouter.ai"
CLINE_BASE_URL = "https://api.cline.bot"
NEBIUS_BASE_URL = "https://tokenfactory.nebius.com"
OPENAI_BASE_URL = "https://api.openai.com"

NEBIUS_BILLING_PATH = "/api-mfe/billing/gateway/root/billingActs/getCurrentTrial"

# Cline reports balances in micro-dollars.
CLINE_CREDITS_PER_DOLLAR = 1_000_000

OPENAI_USAGE_DAYS_BACK = 30

DEFAULT_TIMEOUT_SEC = 30.0
DEFAULT_CONNECT_TIMEOUT_SEC = 10.0
DEFAULT_READ_TIMEOUT_SEC = 20.0

MISSING_API_KEY_MESSAGE = "Missing API key"
