"""Proxy installation and upgrades."""

import pytest
from hexbytes import HexBytes

from eth_deployer.abi import ZERO_ADDRESS
from eth_deployer.interfaces import PROXY_ADMIN_ABI
from eth_deployer.proxy import (
    BeaconUpgradePending,
    FunctionCall,
    SignerResolver,
    SignerUnavailable,
    TransparentProxy,
    encode_call_spec,
    install_beacon_proxy,
    install_transparent_proxy,
    read_beacon_address,
    read_implementation_address,
    select_upgrade_call,
    transfer_proxy_ownership,
    upgrade_proxy,
)
from eth_deployer.roles import DEFAULT_ADMIN_ROLE
from eth_deployer.signer import MultisigProposer, MultisigSigner, NodeAccountSigner


class RecordingProposer(MultisigProposer):
    """Collect proposals instead of talking to a Safe service."""

    def __init__(self):
        self.proposals = []

    def propose(self, multisig_address, to, data, value=0):
        self.proposals.append((multisig_address, to, data, value))
        return HexBytes(b"\x01" * 32)


@pytest.fixture()
def resolver(chain, signer) -> SignerResolver:
    return SignerResolver(chain, signer)


@pytest.fixture()
def implementation(deployer, artifacts):
    handle = deployer.deploy(artifacts.get_factory("Token"), [ZERO_ADDRESS], id="tokenImplementation")
    handle.wait_deployed()
    return handle


@pytest.fixture()
def implementation_v2(deployer, artifacts):
    handle = deployer.deploy(artifacts.get_factory("TokenV2"), [ZERO_ADDRESS], id="tokenImplementation")
    handle.wait_deployed()
    return handle


def test_select_upgrade_call():
    """Fresh proxies get the initializer, installed proxies the upgrade call."""
    placeholder = "0x0000000000000000000000000000000000000001"
    other = "0x0000000000000000000000000000000000000002"
    assert select_upgrade_call(placeholder, placeholder, False, "initialize", "migrate") == "initialize"
    assert select_upgrade_call(other, placeholder, True, "initialize", "migrate") == "initialize"
    assert select_upgrade_call(other, placeholder, False, "initialize", "migrate") == "migrate"
    assert select_upgrade_call(other, placeholder, False, "initialize", None) is None


def test_encode_call_spec(implementation):
    """Call specs can be names, signatures or raw calldata."""
    factory = implementation.factory
    by_name = encode_call_spec(FunctionCall("setValue", [1]), factory)
    by_signature = encode_call_spec(FunctionCall("setValue(uint256)", [1]), None)
    assert by_name == by_signature
    assert encode_call_spec(by_name, None) == by_name
    assert encode_call_spec("0x" + by_name.hex(), None) == by_name
    assert encode_call_spec(None, factory) is None


def test_install_transparent_proxy(chain, templates, resolver, implementation, deployer_address):
    """A new proxy is created, pointed at the implementation and initialized in one upgrade."""
    installation = install_transparent_proxy(
        templates,
        resolver,
        "token",
        implementation,
        initializer=FunctionCall("initialize", [deployer_address]),
    )
    token = installation.handle
    assert installation.freshly_deployed
    assert installation.upgraded
    assert token.address == templates.transparent_proxy_address("token")
    assert read_implementation_address(chain, token.address) == implementation.address
    assert installation.kind.current_implementation() == implementation.address
    assert installation.kind.owner() == deployer_address
    assert token.call("isInitialized")
    assert token.call("hasRole", DEFAULT_ADMIN_ROLE.role_id, deployer_address)


def test_reinstall_is_noop(chain, templates, resolver, implementation, deployer_address):
    """Installing the same implementation again sends nothing."""
    install_transparent_proxy(templates, resolver, "token", implementation, initializer=FunctionCall("initialize", [deployer_address]))
    tx_count = len(chain.transactions)

    installation = install_transparent_proxy(templates, resolver, "token", implementation, initializer=FunctionCall("initialize", [deployer_address]))
    assert not installation.freshly_deployed
    assert not installation.upgraded
    assert len(chain.transactions) == tx_count


def test_upgrade_runs_upgrade_call(chain, templates, resolver, implementation, implementation_v2, deployer_address):
    """An installed proxy gets the upgrade call, not the initializer."""
    install_transparent_proxy(templates, resolver, "token", implementation, initializer=FunctionCall("initialize", [deployer_address]))

    installation = install_transparent_proxy(
        templates,
        resolver,
        "token",
        implementation_v2,
        initializer=FunctionCall("initialize", [deployer_address]),
        upgrade_call=FunctionCall("migrate", [42]),
    )
    token = installation.handle
    assert installation.upgraded
    assert not installation.freshly_deployed
    assert token.call("version") == 2
    assert token.call("value") == 42

    upgrades = chain.calls_to(installation.kind.authority.address, "upgradeAndCall", PROXY_ADMIN_ABI)
    assert len(upgrades) == 2


def test_plain_upgrade_without_call(chain, templates, resolver, implementation, implementation_v2):
    """Without a bundled call the plain upgrade function is used."""
    install_transparent_proxy(templates, resolver, "token", implementation)
    installation = install_transparent_proxy(templates, resolver, "token", implementation_v2)
    admin = installation.kind.authority.address
    assert len(chain.calls_to(admin, "upgrade", PROXY_ADMIN_ABI)) == 2
    assert installation.handle.call("version") == 2


def test_multisig_owner_gets_proposal(chain, templates, signer, implementation):
    """Upgrades of a proxy admin owned by a multisig are proposed, not sent."""
    multisig = chain.deploy_plain("Multisig", (1,))
    admin = templates.proxy_admin(id="multisig", owner=multisig)
    admin.wait_deployed()

    proposer = RecordingProposer()
    resolver = SignerResolver(chain, signer, multisig_proposer=proposer)
    installation = install_transparent_proxy(templates, resolver, "token", implementation, proxy_admin=admin.address)

    assert installation.upgraded
    assert len(proposer.proposals) == 1
    multisig_address, to, data, value = proposer.proposals[0]
    assert multisig_address == multisig
    assert to == admin.address
    # Nothing executed yet
    assert installation.kind.current_implementation() == templates.placeholder_address


def test_multisig_without_proposer(chain, templates, resolver, implementation):
    """A contract owner needs a proposer."""
    multisig = chain.deploy_plain("Multisig", (2,))
    admin = templates.proxy_admin(id="multisig", owner=multisig)
    admin.wait_deployed()
    with pytest.raises(SignerUnavailable):
        install_transparent_proxy(templates, resolver, "token", implementation, proxy_admin=admin.address)


def test_signer_resolver(chain, signer, user_1):
    """Own signer first, then multisig contracts, then node accounts."""
    proposer = RecordingProposer()
    resolver = SignerResolver(chain, signer, multisig_proposer=proposer)
    assert resolver.resolve(signer.address) is signer
    assert isinstance(resolver.resolve(user_1), NodeAccountSigner)

    multisig = chain.deploy_plain("Multisig", (3,))
    assert isinstance(resolver.resolve(multisig), MultisigSigner)

    with pytest.raises(SignerUnavailable):
        resolver.resolve("0x0000000000000000000000000000000000000123")


def test_default_signer(chain, signer):
    default = NodeAccountSigner("0x0000000000000000000000000000000000000456")
    resolver = SignerResolver(chain, signer, default_signer=default)
    assert resolver.resolve("0x0000000000000000000000000000000000000456") is default


def test_transfer_proxy_ownership(chain, templates, resolver, implementation, user_1):
    """Ownership moves once, then the transfer is a no-op."""
    installation = install_transparent_proxy(templates, resolver, "token", implementation)
    assert transfer_proxy_ownership(installation.kind, user_1, resolver)
    assert installation.kind.owner() == user_1
    assert not transfer_proxy_ownership(installation.kind, user_1, resolver)


def test_upgrade_signed_by_node_account(chain, templates, signer, implementation, implementation_v2, user_1):
    """After handing over the admin, upgrades are signed by the new owner."""
    resolver = SignerResolver(chain, signer)
    installation = install_transparent_proxy(templates, resolver, "token", implementation)
    transfer_proxy_ownership(installation.kind, user_1, resolver)

    kind = TransparentProxy(installation.handle, installation.kind.authority)
    assert upgrade_proxy(kind, implementation_v2.address, resolver, templates.placeholder_address)
    upgrade_tx = chain.transactions[-1]
    assert upgrade_tx["from"] == user_1
    assert installation.handle.call("version") == 2


def test_install_beacon_proxy(chain, templates, resolver, implementation, deployer_address, user_1):
    """Beacon is upgraded first, then the proxy is created and initialized in one transaction."""
    installation = install_beacon_proxy(
        templates,
        resolver,
        "vault",
        implementation,
        initializer=FunctionCall("initialize", [deployer_address]),
    )
    vault = installation.handle
    beacon = templates.upgradeable_beacon_address("vault")
    assert installation.freshly_deployed
    assert installation.upgraded
    assert vault.address == templates.beacon_proxy_address(beacon, "vault")
    assert read_beacon_address(chain, vault.address) == beacon
    assert vault.call("isInitialized")
    assert vault.call("hasRole", DEFAULT_ADMIN_ROLE.role_id, deployer_address)

    # Second proxy on the same beacon
    second = install_beacon_proxy(
        templates,
        resolver,
        "vault2",
        implementation,
        beacon_id="vault",
        initializer=FunctionCall("initialize", [user_1]),
    )
    assert second.freshly_deployed
    assert not second.upgraded
    assert second.handle.call("hasRole", DEFAULT_ADMIN_ROLE.role_id, user_1)
    assert not vault.call("hasRole", DEFAULT_ADMIN_ROLE.role_id, user_1)


def test_upgrade_beacon_proxy(chain, templates, resolver, implementation, implementation_v2):
    """Existing beacon proxies follow the beacon upgrade, the upgrade call is sent to the proxy."""
    install_beacon_proxy(templates, resolver, "vault", implementation)
    installation = install_beacon_proxy(templates, resolver, "vault", implementation_v2, upgrade_call=FunctionCall("migrate", [9]))
    assert installation.upgraded
    assert not installation.freshly_deployed
    assert installation.handle.call("version") == 2
    assert installation.handle.call("value") == 9

    tx_count = len(chain.transactions)
    again = install_beacon_proxy(templates, resolver, "vault", implementation_v2, upgrade_call=FunctionCall("migrate", [9]))
    assert not again.upgraded
    assert len(chain.transactions) == tx_count


def test_beacon_proxy_waits_for_proposed_upgrade(chain, templates, signer, implementation, implementation_v2, user_1):
    """A new proxy is only created once its beacon points to the implementation it is initialized for."""
    first = install_beacon_proxy(templates, SignerResolver(chain, signer), "vault", implementation)
    multisig = chain.deploy_plain("Multisig", (4,))
    transfer_proxy_ownership(first.kind, multisig, SignerResolver(chain, signer))

    proposer = RecordingProposer()
    resolver = SignerResolver(chain, signer, multisig_proposer=proposer)
    initializer = FunctionCall("initialize", [user_1])
    with pytest.raises(BeaconUpgradePending):
        install_beacon_proxy(templates, resolver, "vault2", implementation_v2, beacon_id="vault", initializer=initializer)

    beacon = first.kind.authority
    assert len(proposer.proposals) == 1
    assert not chain.has_code(templates.beacon_proxy_address(beacon.address, "vault2"))

    # Multisig owners sign and execute the upgrade
    multisig_address, to, data, value = proposer.proposals[0]
    chain.send_as(multisig_address, {"to": to, "data": data, "value": value})
    assert beacon.call("implementation") == implementation_v2.address

    installation = install_beacon_proxy(templates, resolver, "vault2", implementation_v2, beacon_id="vault", initializer=initializer)
    assert installation.freshly_deployed
    assert not installation.upgraded
    assert installation.handle.call("version") == 2
    assert installation.handle.call("isInitialized")
    assert installation.handle.call("hasRole", DEFAULT_ADMIN_ROLE.role_id, user_1)
    assert len(proposer.proposals) == 1
