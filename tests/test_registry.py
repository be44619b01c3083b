"""On-chain deployment registry client."""

import pytest

from eth_deployer.abi import ZERO_ADDRESS, ZERO_HASH
from eth_deployer.registry import DeploymentInfo, Registry, settings_id


@pytest.fixture()
def registry(deployer, artifacts) -> Registry:
    return Registry.from_deployer(deployer, artifacts)


@pytest.fixture()
def counter(deployer, artifacts, deployer_address):
    handle = deployer.deploy(artifacts.get_factory("Counter"), [deployer_address], id="counter")
    handle.wait_deployed()
    return handle


def test_settings_id_is_content_hash():
    """Key order does not matter, content does."""
    assert settings_id({"a": 1, "b": [1, 2]}) == settings_id({"b": [1, 2], "a": 1})
    assert settings_id({"a": 1}) != settings_id({"a": 2})
    assert len(settings_id({})) == 32


def test_settings_id_rejects_unstable_values():
    """Objects without a stable serialisation would change the hash every run."""
    assert settings_id({"salt": b"\x01"}) == settings_id({"salt": bytearray(b"\x01")})
    assert settings_id({"ids": {"b", "a"}}) == settings_id({"ids": ["a", "b"]})
    with pytest.raises(TypeError):
        settings_id({"callback": object()})


def test_registry_is_deterministic(chain, deployer, artifacts, registry):
    """Second attach sends nothing."""
    tx_count = len(chain.transactions)
    again = Registry.from_deployer(deployer, artifacts)
    assert again.address == registry.address
    assert len(chain.transactions) == tx_count


def test_unknown_addresses(registry, counter):
    """Unregistered addresses fall back to a code check."""
    infos = registry.deployment_info({"counter": counter.address, "nothing": "0x0000000000000000000000000000000000000123"})
    assert not infos["counter"].registered
    assert infos["counter"].deployed
    assert not infos["nothing"].registered
    assert not infos["nothing"].deployed
    assert infos["nothing"].owner == ZERO_ADDRESS
    assert registry.deployment_info({}) == {}


def test_register_and_fold(chain, registry, counter, deployer_address):
    """Phase updates of a deployment made in this run fold into its registration."""
    settings = settings_id({"fee": 30})
    registry.set_deployment_info(counter.address, counter.deploy_transaction, settings)
    registry.set_initialized(counter.address, settings)
    registry.set_configured(counter.address, settings)
    assert registry.pending_calls == []
    assert registry.has_pending()

    tx_count = len(chain.transactions)
    tx = registry.sync()
    assert tx is not None
    assert len(chain.transactions) == tx_count + 1
    assert not registry.has_pending()

    info = registry.deployment_info({"counter": counter.address})["counter"]
    receipt = chain.wait_for_receipt(counter.deploy_transaction.tx_hash)
    assert info.registered
    assert info.initialized
    assert info.owner == deployer_address
    assert info.block == receipt["blockNumber"]
    assert info.timestamp == chain.get_block(receipt["blockNumber"])["timestamp"]
    assert info.hash == bytes(counter.deploy_transaction.tx_hash)
    assert info.construct_settings == settings
    assert info.initialize_settings == settings
    assert info.last_configure_settings == settings


def test_register_existing(registry, counter, deployer_address):
    """Contracts with code but no record can be registered late."""
    registry.register_existing(counter.address, settings_id({"fee": 30}))
    registry.sync()

    info = registry.deployment_info({"counter": counter.address})["counter"]
    assert info.registered
    assert not info.initialized
    assert info.owner == deployer_address
    assert info.construct_settings == settings_id({"fee": 30})


def test_update_registered(registry, counter):
    """Later runs update a registered record with separate calls."""
    registry.set_deployment_info(counter.address, counter.deploy_transaction)
    registry.sync()

    new_settings = settings_id({"fee": 50})
    registry.set_configured(counter.address, new_settings)
    assert len(registry.pending_calls) == 1
    registry.sync()

    info = registry.deployment_info({"counter": counter.address})["counter"]
    assert info.last_configure_settings == new_settings
    assert not info.initialized
    assert info.construct_settings == ZERO_HASH


def test_reverting_write_is_dropped(chain, registry, counter):
    """Writes that would revert are skipped instead of sinking the batch."""
    registry.set_initialized(counter.address, settings_id({}))
    tx_count = len(chain.transactions)
    assert registry.sync() is None
    assert len(chain.transactions) == tx_count
    assert not registry.has_pending()


def test_nothing_to_sync(chain, registry):
    tx_count = len(chain.transactions)
    assert registry.sync() is None
    assert len(chain.transactions) == tx_count


def test_deployment_info_tuple_round_trip():
    info = DeploymentInfo(owner="0x0000000000000000000000000000000000000001", initialized=True, block=5, timestamp=10)
    parsed = DeploymentInfo.from_tuple(info.as_tuple())
    assert parsed.registered
    assert parsed.deployed
    assert parsed.owner == info.owner
