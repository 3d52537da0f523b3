from unittest.mock import MagicMock

from pymongo.errors import PyMongoError

from schemas import Currency, StoreSettings
from store_settings import DEFAULT_STORE_SETTINGS, format_price, get_store_settings, update_store_settings


def test_first_read_creates_default_document(db):
    assert get_store_settings(db) == DEFAULT_STORE_SETTINGS
    assert db["store_settings"].count_documents({"_id": "global"}) == 1


def test_update_then_read(db):
    settings = StoreSettings(currency=Currency(code="GBP", symbol="£"))

    update_store_settings(db, settings)

    assert get_store_settings(db).currency.code == "GBP"
    assert db["store_settings"].count_documents({}) == 1


def test_database_errors_fall_back_to_defaults():
    db = MagicMock()
    db.__getitem__.return_value.find_one.side_effect = PyMongoError("down")

    assert get_store_settings(db) == DEFAULT_STORE_SETTINGS


def test_format_price():
    assert format_price(10) == "$10.00"
    euro = StoreSettings(currency=Currency(code="EUR", symbol="€", position="after"))
    assert format_price(9.5, euro) == "9.50 €"
