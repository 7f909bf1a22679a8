"""Tests for the loguru setup."""
import json

import pytest
from loguru import logger

from cartsync.config.settings import CartSyncSettings
from cartsync.utils.logger import configure_logging, get_logger


@pytest.fixture
def restore_logging():
    """Put the default handlers back after a test reconfigures them."""
    yield
    configure_logging()


@pytest.fixture
def records():
    """Capture loguru records emitted during a test."""
    captured = []
    handler_id = logger.add(lambda m: captured.append(m.record), level="DEBUG")
    yield captured
    logger.remove(handler_id)


def test_get_logger_binds_project_name(records):
    get_logger("PriceSyncService").info("save_price_entry: queued", price_id="price_1")

    assert records[-1]["extra"]["name"] == "cartsync.PriceSyncService"
    assert records[-1]["extra"]["price_id"] == "price_1"


def test_get_logger_keeps_qualified_name(records):
    get_logger("cartsync.bootstrap").info("Runtime started")
    assert records[-1]["extra"]["name"] == "cartsync.bootstrap"


def test_no_file_sink_without_log_file(restore_logging):
    """Test that only the console sink is installed when LOG_FILE is unset."""
    handler_ids = configure_logging(CartSyncSettings(LOG_FILE=None))
    assert len(handler_ids) == 1


def test_file_sink_keeps_only_project_records(tmp_path, restore_logging):
    """Test that the JSON file holds project records with their context fields."""
    log_file = tmp_path / "cartsync.log"
    configure_logging(CartSyncSettings(LOG_FILE=log_file, LOG_LEVEL="DEBUG"))

    get_logger("BasketSession").info("Sync basket item: failed", basket_id="b-1")
    logger.bind(name="someone.else").info("Not ours")
    logger.complete()

    lines = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert [line["record"]["message"] for line in lines] == ["Sync basket item: failed"]
    assert lines[0]["record"]["extra"]["basket_id"] == "b-1"
