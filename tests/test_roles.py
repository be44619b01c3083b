"""Role grant reconciliation."""

import pytest

from eth_deployer.abi import ZERO_ADDRESS, ZERO_HASH
from eth_deployer.interfaces import ACCESS_CONTROL_ABI
from eth_deployer.roles import DEFAULT_ADMIN_ROLE, Role, RoleManager, RoleNotRegistered, RoleRequest
from eth_deployer.signer import NodeAccountSigner

MINTER_ROLE = Role("MINTER_ROLE")
OPERATOR_ROLE = Role("OPERATOR_ROLE")


@pytest.fixture()
def token(deployer, artifacts, deployer_address):
    """Has multicall."""
    handle = deployer.deploy(artifacts.get_factory("Token"), [deployer_address], id="token")
    handle.wait_deployed()
    return handle


@pytest.fixture()
def counter(deployer, artifacts, deployer_address):
    """No multicall."""
    handle = deployer.deploy(artifacts.get_factory("Counter"), [deployer_address], id="counter")
    handle.wait_deployed()
    return handle


def test_role_ids():
    """Role ids are name hashes, except the default admin role."""
    assert DEFAULT_ADMIN_ROLE.role_id == ZERO_HASH
    assert MINTER_ROLE.role_id != OPERATOR_ROLE.role_id
    assert len(MINTER_ROLE.role_id) == 32
    assert str(MINTER_ROLE) == "MINTER_ROLE"


def test_grants_batched_with_multicall(chain, signer, token, user_1):
    """Missing grants on a multicall contract go out in one transaction."""
    manager = RoleManager(signer)
    manager.register_config("token", token, [MINTER_ROLE, OPERATOR_ROLE])
    manager.request("vault", user_1, MINTER_ROLE)
    manager.request("vault", user_1, OPERATOR_ROLE)
    manager.request("other", user_1, MINTER_ROLE)

    tx_count = len(chain.transactions)
    assert manager.grant_all() == []
    assert len(chain.transactions) == tx_count + 1
    assert token.call("hasRole", MINTER_ROLE.role_id, user_1)
    assert token.call("hasRole", OPERATOR_ROLE.role_id, user_1)


def test_grants_one_by_one_without_multicall(chain, signer, counter, user_1, deployer_address):
    manager = RoleManager(signer)
    manager.register_config("counter", counter, [OPERATOR_ROLE])
    manager.request("vault", user_1, RoleRequest("counter", OPERATOR_ROLE))
    manager.request("keeper", deployer_address, RoleRequest("counter", OPERATOR_ROLE))

    tx_count = len(chain.transactions)
    assert manager.grant_all() == []
    assert len(chain.transactions) == tx_count + 2
    grants = chain.calls_to(counter.address, "grantRole", ACCESS_CONTROL_ABI)
    assert len(grants) == 2


def test_existing_grants_skipped(chain, signer, token, user_1):
    """Reconciling twice sends nothing the second time."""
    manager = RoleManager(signer)
    manager.register_config("token", token, [MINTER_ROLE])
    manager.request("vault", user_1, MINTER_ROLE)
    manager.grant_all()

    tx_count = len(chain.transactions)
    assert manager.grant_all() == []
    assert len(chain.transactions) == tx_count


def test_failed_grant_reported(deployer, artifacts, signer, user_1):
    """Grant failures are returned with the requesting configurations."""
    no_admin = deployer.deploy(artifacts.get_factory("Token"), [ZERO_ADDRESS], id="noAdmin")
    no_admin.wait_deployed()

    manager = RoleManager(signer)
    manager.register_config("noAdmin", no_admin, [MINTER_ROLE])
    manager.request("vault", user_1, MINTER_ROLE)
    failures = manager.grant_all()
    assert len(failures) == 1
    assert failures[0].requesters == ["vault"]
    assert failures[0].role == MINTER_ROLE
    assert failures[0].account == user_1


def test_role_admin_signer(chain, deployer, artifacts, signer, user_1):
    """Grants on a contract are signed by its registered role admin."""
    counter = deployer.deploy(artifacts.get_factory("Counter"), [user_1], id="userCounter")
    counter.wait_deployed()

    manager = RoleManager(signer)
    manager.register_config("userCounter", counter, [OPERATOR_ROLE], admin=NodeAccountSigner(user_1))
    manager.request("vault", signer.address, OPERATOR_ROLE)
    assert manager.grant_all() == []
    assert chain.transactions[-1]["from"] == user_1


def test_unknown_role(signer):
    manager = RoleManager(signer)
    with pytest.raises(RoleNotRegistered):
        manager.request("vault", ZERO_ADDRESS, MINTER_ROLE)
    with pytest.raises(RoleNotRegistered):
        manager.request("vault", ZERO_ADDRESS, RoleRequest("missing", MINTER_ROLE))
