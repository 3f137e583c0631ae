import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
hotel_info_ms_url = os.environ.get("HOTEL_INFO_MS_URL", "http://localhost:8005")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Tax configuration: the hotel-info service owns the rules, these are the fallback
TAX_ENABLED = os.environ.get("TAX_ENABLED", "true").lower() in ("1", "true", "yes")
DEFAULT_TAX_NAME = os.environ.get("DEFAULT_TAX_NAME", "GST")
DEFAULT_TAX_PERCENTAGE = Decimal(os.environ.get("DEFAULT_TAX_PERCENTAGE", "18"))
TAX_RULES_TTL = int(os.environ.get("TAX_RULES_TTL", "300"))

PROMO_INCREMENT_ATTEMPTS = int(os.environ.get("PROMO_INCREMENT_ATTEMPTS", "3"))
MAIN_ACCOUNT_NAME = os.environ.get("MAIN_ACCOUNT_NAME", "Main Hotel Account")

INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
INVOICE_DEFAULT_TERMS = os.environ.get("INVOICE_DEFAULT_TERMS", "Payment due upon receipt")
INVOICE_NUMBER_ATTEMPTS = int(os.environ.get("INVOICE_NUMBER_ATTEMPTS", "10"))
