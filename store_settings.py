import logging
from typing import Optional

from pymongo.errors import PyMongoError

from schemas import StoreSettings

logger = logging.getLogger(__name__)

SETTINGS_COLLECTION = "store_settings"
SETTINGS_DOC_ID = "global"

DEFAULT_STORE_SETTINGS = StoreSettings()

CURRENCY_OPTIONS = [
    {"code": "USD", "symbol": "$", "name": "US Dollar"},
    {"code": "EUR", "symbol": "€", "name": "Euro"},
    {"code": "GBP", "symbol": "£", "name": "British Pound"},
    {"code": "JPY", "symbol": "¥", "name": "Japanese Yen"},
    {"code": "AUD", "symbol": "A$", "name": "Australian Dollar"},
    {"code": "CAD", "symbol": "C$", "name": "Canadian Dollar"},
    {"code": "CHF", "symbol": "CHF", "name": "Swiss Franc"},
    {"code": "CNY", "symbol": "¥", "name": "Chinese Yuan"},
    {"code": "INR", "symbol": "₹", "name": "Indian Rupee"},
    {"code": "PKR", "symbol": "₨", "name": "Pakistani Rupee"},
    {"code": "MXN", "symbol": "$", "name": "Mexican Peso"},
    {"code": "BRL", "symbol": "R$", "name": "Brazilian Real"},
    {"code": "ZAR", "symbol": "R", "name": "South African Rand"},
    {"code": "SGD", "symbol": "S$", "name": "Singapore Dollar"},
    {"code": "NZD", "symbol": "NZ$", "name": "New Zealand Dollar"},
    {"code": "TRY", "symbol": "₺", "name": "Turkish Lira"},
    {"code": "AED", "symbol": "د.إ", "name": "UAE Dirham"},
]

REGION_OPTIONS = [
    {"country": "United States", "country_code": "US", "timezone": "America/New_York"},
    {"country": "United Kingdom", "country_code": "GB", "timezone": "Europe/London"},
    {"country": "European Union", "country_code": "EU", "timezone": "Europe/Brussels"},
    {"country": "Japan", "country_code": "JP", "timezone": "Asia/Tokyo"},
    {"country": "Australia", "country_code": "AU", "timezone": "Australia/Sydney"},
    {"country": "Canada", "country_code": "CA", "timezone": "America/Toronto"},
    {"country": "India", "country_code": "IN", "timezone": "Asia/Kolkata"},
    {"country": "Pakistan", "country_code": "PK", "timezone": "Asia/Karachi"},
    {"country": "Brazil", "country_code": "BR", "timezone": "America/Sao_Paulo"},
    {"country": "Mexico", "country_code": "MX", "timezone": "America/Mexico_City"},
    {"country": "Singapore", "country_code": "SG", "timezone": "Asia/Singapore"},
    {"country": "United Arab Emirates", "country_code": "AE", "timezone": "Asia/Dubai"},
]


def get_store_settings(db) -> StoreSettings:
    """Load the global settings, creating the default document on first read."""
    try:
        doc = db[SETTINGS_COLLECTION].find_one({"_id": SETTINGS_DOC_ID})
        if doc:
            doc.pop("_id", None)
            return StoreSettings(**doc)
        db[SETTINGS_COLLECTION].insert_one({"_id": SETTINGS_DOC_ID, **DEFAULT_STORE_SETTINGS.model_dump()})
    except PyMongoError:
        logger.exception("Error getting store settings")
    return DEFAULT_STORE_SETTINGS


def update_store_settings(db, settings: StoreSettings) -> StoreSettings:
    db[SETTINGS_COLLECTION].replace_one(
        {"_id": SETTINGS_DOC_ID},
        {"_id": SETTINGS_DOC_ID, **settings.model_dump()},
        upsert=True,
    )
    logger.info("Store settings updated: currency=%s region=%s", settings.currency.code, settings.region.country_code)
    return settings


def format_price(price: float, settings: Optional[StoreSettings] = None) -> str:
    currency = (settings or DEFAULT_STORE_SETTINGS).currency
    formatted = f"{price:.2f}"
    if currency.position == "before":
        return f"{currency.symbol}{formatted}"
    return f"{formatted} {currency.symbol}"
