"""Run configuration from environment variables."""

import logging

from eth_deployer.address import CREATE2_DEPLOYER_ADDRESS
from eth_deployer.config import EnvironmentConfig
from eth_deployer.utils import setup_console_logging


def test_defaults():
    config = EnvironmentConfig.from_env({})
    assert config.default_salt == 0
    assert config.confirmations is None
    assert not config.is_forced_initialize("token")
    assert not config.is_forced_configure("token")
    assert not config.fail_on_error
    assert config.gas_price_multiplier == 1.0
    assert config.deployer_address == CREATE2_DEPLOYER_ADDRESS
    assert config.safe_service_url is None
    assert config.private_key is None


def test_from_env():
    config = EnvironmentConfig.from_env(
        {
            "DEFAULT_SALT": "0x01",
            "CONFIRMATIONS": "0",
            "CREATE2_FORCE_INITIALIZE": "token, vault",
            "CREATE2_FORCE_CONFIGURE": "*",
            "FAIL_ON_ERROR": "true",
            "GAS_PRICE_MULTIPLIER": "1.5",
            "DEPLOYER": "0x0000000000000000000000000000000000000001",
            "SAFE_SERVICE_URL": "https://safe.example.com",
            "PRIVATE_KEY": "0x" + "11" * 32,
        }
    )
    assert config.default_salt == "0x01"
    assert config.confirmations == 0
    assert config.is_forced_initialize("token")
    assert config.is_forced_initialize("vault")
    assert not config.is_forced_initialize("oracle")
    assert config.is_forced_configure("anything")
    assert config.fail_on_error
    assert config.gas_price_multiplier == 1.5
    assert config.deployer_address == "0x0000000000000000000000000000000000000001"
    assert config.safe_service_url == "https://safe.example.com"
    assert config.private_key == "0x" + "11" * 32
    # Keys stay out of logs
    assert "11111111" not in repr(config)


def test_console_logging_level(monkeypatch):
    """Log level is read from the environment."""
    monkeypatch.setenv("LOG_LEVEL", "warning")
    logger = setup_console_logging()
    assert logger.level == logging.WARNING
    assert logging.getLogger("web3.RequestManager").level == logging.WARNING
