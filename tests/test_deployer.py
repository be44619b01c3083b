"""Deterministic deployments through the shared deployer."""

import pytest
from eth_utils import keccak

from eth_deployer.abi import ZERO_ADDRESS
from eth_deployer.address import CREATE2_DEPLOYER_ADDRESS, generate_salt
from eth_deployer.confirmation import TransactionFailed
from eth_deployer.deployer import ContractDeploymentFailed, Deployer, DeployerCall, DeployerNotBootstrapped
from eth_deployer.signer import NodeAccountSigner
from eth_deployer.testing import SimulatedChain


def test_deploy_at_predicted_address(chain, deployer, artifacts, deployer_address):
    """Contract lands on the address computed offline."""
    token = artifacts.get_factory("Token")
    expected = deployer.factory_address(token, [deployer_address], id="token")

    handle = deployer.deploy(token, [deployer_address], id="token")
    assert handle.address == expected
    assert handle.newly_deployed
    receipt = handle.wait_deployed()
    assert receipt["status"] == 1
    assert chain.has_code(expected)
    assert handle.call("version") == 1


def test_deploy_twice_is_noop(chain, deployer, artifacts, deployer_address):
    """Second deployment of the same contract sends nothing."""
    token = artifacts.get_factory("Token")
    deployer.deploy(token, [deployer_address], id="token").wait_deployed()
    tx_count = len(chain.transactions)

    again = deployer.deploy(token, [deployer_address], id="token")
    assert not again.newly_deployed
    assert again.wait_deployed() is None
    assert len(chain.transactions) == tx_count


def test_id_and_salt_change_address(deployer, artifacts, deployer_address):
    token = artifacts.get_factory("Token")
    a = deployer.factory_address(token, [deployer_address], id="a")
    b = deployer.factory_address(token, [deployer_address], id="b")
    c = deployer.factory_address(token, [deployer_address], salt=1, id="a")
    assert len({a, b, c}) == 3


def test_default_salt(chain, signer, artifacts, deployer_address):
    """Deployer default salt is used when none is given."""
    token = artifacts.get_factory("Token")
    deployer = Deployer(chain, signer, default_salt=42)
    assert deployer.factory_address(token, [deployer_address]) == deployer.factory_address(token, [deployer_address], salt=42)


def test_post_deploy_calls(deployer, artifacts):
    """Calls run in the deployment transaction, raw calldata targets the new contract."""
    token = artifacts.get_factory("Token")
    handle = deployer.deploy(
        token,
        [ZERO_ADDRESS],
        id="token",
        calls=[token.encode_function_call("setValue", [5])],
    )
    handle.wait_deployed()
    assert handle.call("value") == 5

    other = deployer.deploy(
        token,
        [ZERO_ADDRESS],
        id="other",
        calls=[DeployerCall(handle.address, bytes(token.encode_function_call("setValue", [7])))],
    )
    other.wait_deployed()
    assert handle.call("value") == 7
    assert other.call("value") == 0


def test_failing_constructor(deployer, artifacts):
    """A reverting deployment surfaces when waiting."""
    handle = deployer.deploy(artifacts.get_factory("Broken"), id="broken")
    with pytest.raises(TransactionFailed):
        handle.wait_deployed()


def test_not_bootstrapped():
    """Deploying on a network without the shared deployer fails early."""
    chain = SimulatedChain(bootstrap=False)
    deployer = Deployer(chain, NodeAccountSigner(chain.get_signers()[0]))
    with pytest.raises(DeployerNotBootstrapped):
        deployer.deploy(chain.artifacts.get_factory("Counter"), [chain.get_signers()[0]])
    assert chain.transactions == []


def test_custom_deployer_address(signer):
    """The shared deployer address can be overridden."""
    chain = SimulatedChain(bootstrap=False)
    custom = "0x0000000000000000000000000000000000c0ffee"
    chain.install_create2_deployer(custom)
    deployer = Deployer(chain, NodeAccountSigner(chain.get_signers()[0]), custom)
    counter = chain.artifacts.get_factory("Counter")
    handle = deployer.deploy(counter, [chain.get_signers()[0]])
    handle.wait_deployed()
    assert handle.address != Deployer(chain, signer, CREATE2_DEPLOYER_ADDRESS).factory_address(counter, [chain.get_signers()[0]])
    assert chain.has_code(handle.address)


def test_clone(chain, deployer, artifacts):
    """Clones delegate to the target but keep their own storage."""
    token = artifacts.get_factory("Token")
    target = deployer.deploy(token, [ZERO_ADDRESS], id="target")
    target.wait_deployed()

    expected = deployer.clone_address(target.address, id="clone")
    clone = deployer.clone(target.address, id="clone", factory=token)
    clone.wait_deployed()
    assert clone.address == expected
    assert clone.call("version") == 1

    clone.transact_and_wait("setValue", 3)
    assert clone.call("value") == 3
    assert target.call("value") == 0

    again = deployer.clone(target.address, id="clone", factory=token)
    assert not again.newly_deployed


def test_templates(chain, deployer, artifacts, deployer_address):
    """Template instances land on the same address as a direct deployment."""
    counter = artifacts.get_factory("Counter")
    expected = deployer.factory_address(counter, [deployer_address], id="counter")

    handle = deployer.deploy_template_from_factory(counter, [deployer_address], id="counter")
    handle.wait_deployed()
    assert handle.address == expected
    assert deployer.template_exists(keccak(counter.init_code([deployer_address])))

    # Template exists, so only the instance is deployed
    tx_count = len(chain.transactions)
    template = deployer.create_template(counter, [deployer_address])
    assert len(chain.transactions) == tx_count

    second = deployer.deploy_template(template, counter, id="counter2")
    second.wait_deployed()
    assert second.address == deployer.template_address(template, id="counter2")
    assert len(chain.transactions) == tx_count + 1


def test_deploy_template_requires_template(deployer, artifacts, deployer_address):
    """Instantiating an unknown template reverts."""
    handle = deployer.deploy_template(b"\x01" * 32, artifacts.get_factory("Counter"), salt=generate_salt(None, 1))
    with pytest.raises(TransactionFailed):
        handle.wait_deployed()


def test_create_template_failure_is_deployment_failure(deployer, artifacts, monkeypatch):
    """A reverted template registration is reported as a failed deployment."""
    counter = artifacts.get_factory("Counter")
    # Pretend the template is missing although it exists, the second registration reverts
    deployer.create_template(counter, ["0x0000000000000000000000000000000000000001"])
    monkeypatch.setattr(deployer, "template_exists", lambda template: False)
    with pytest.raises(ContractDeploymentFailed):
        deployer.create_template(counter, ["0x0000000000000000000000000000000000000001"])
