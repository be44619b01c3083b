"""Upgradeable proxy installation and upgrade protocol.

Two proxy flavours are supported, each behind :py:class:`ProxyKind`:

- :py:class:`TransparentProxy` is upgraded through its ``ProxyAdmin``

- :py:class:`BeaconProxy` follows an ``UpgradeableBeacon``, upgraded by the beacon owner

The protocol always reads the live implementation right before deciding,
and never sends an upgrade when the installed and desired implementations match.

Upgrades are signed by whoever owns the admin or beacon:

- the deployer signer, if it is the owner

- a multisig, if the owner is a contract, in which case the upgrade is only proposed

- an account unlocked on the node

.. code-block:: python

    resolver = SignerResolver(chain, signer, multisig_proposer=proposer)
    installation = install_transparent_proxy(
        templates,
        resolver,
        "token",
        implementation,
        initializer=FunctionCall("initialize", [owner]),
    )
    token = installation.handle

"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_deployer.abi import ContractFactory, encode_with_signature
from eth_deployer.address import Salt
from eth_deployer.chain import ChainRPC
from eth_deployer.confirmation import SubmittedTransaction, wait_for_transaction
from eth_deployer.contract import ContractHandle
from eth_deployer.interfaces import BEACON_PROXY, PROXY_ADMIN, UPGRADEABLE_BEACON
from eth_deployer.signer import MultisigProposer, MultisigSigner, NodeAccountSigner, TransactionSigner
from eth_deployer.templates import TemplateRegistry

logger = logging.getLogger(__name__)


#: bytes32(uint256(keccak256("eip1967.proxy.implementation")) - 1)
ERC1967_IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC

#: bytes32(uint256(keccak256("eip1967.proxy.admin")) - 1)
ERC1967_ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103

#: bytes32(uint256(keccak256("eip1967.proxy.beacon")) - 1)
ERC1967_BEACON_SLOT = 0xA3F0AD74E5423AEBFD80D3EF4346578335A9A72AEAEE59FF6CB3582B35133D50


class SignerUnavailable(Exception):
    """We cannot sign or propose for the owner address."""


class BeaconUpgradePending(Exception):
    """A new beacon proxy needs its initializer, but the beacon upgrade is still waiting for multisig signatures."""


def read_slot_address(chain: ChainRPC, address: HexAddress | str, slot: int) -> HexAddress:
    data = chain.get_storage_at(address, slot)
    return Web3.to_checksum_address(bytes(data).rjust(32, b"\x00")[-20:])


def read_admin_address(chain: ChainRPC, proxy: HexAddress | str) -> HexAddress:
    """Admin of an ERC-1967 proxy, read from storage."""
    return read_slot_address(chain, proxy, ERC1967_ADMIN_SLOT)


def read_implementation_address(chain: ChainRPC, proxy: HexAddress | str) -> HexAddress:
    """Implementation of an ERC-1967 proxy, read from storage."""
    return read_slot_address(chain, proxy, ERC1967_IMPLEMENTATION_SLOT)


def read_beacon_address(chain: ChainRPC, proxy: HexAddress | str) -> HexAddress:
    """Beacon of an ERC-1967 beacon proxy, read from storage."""
    return read_slot_address(chain, proxy, ERC1967_BEACON_SLOT)


@dataclass(slots=True, frozen=True)
class FunctionCall:
    """A function call to encode against the implementation ABI.

    ``name`` can also be a full signature like ``initialize(address,uint256)``.
    """

    name: str
    args: Sequence = field(default_factory=tuple)

    def encode(self, factory: ContractFactory | None) -> bytes:
        if "(" in self.name:
            return encode_with_signature(self.name, list(self.args))
        assert factory is not None, f"Need an ABI to encode {self.name}"
        return bytes(factory.encode_function_call(self.name, self.args))


#: Initializer and upgrade calls are given as a function name, a :py:class:`FunctionCall` or encoded calldata
CallSpec = str | FunctionCall | bytes | HexBytes


def as_function_call(spec: CallSpec | None) -> FunctionCall | bytes | None:
    if spec is None:
        return None
    if isinstance(spec, FunctionCall):
        return spec
    if isinstance(spec, (bytes, HexBytes)):
        return bytes(spec)
    if isinstance(spec, str):
        if spec.startswith("0x"):
            return bytes(HexBytes(spec))
        return FunctionCall(spec)
    raise TypeError(f"Unsupported call spec: {spec}")


def encode_call_spec(spec: CallSpec | None, factory: ContractFactory | None) -> bytes | None:
    call = as_function_call(spec)
    if call is None:
        return None
    if isinstance(call, bytes):
        return call
    return call.encode(factory)


def select_upgrade_call(
    current: HexAddress | str,
    placeholder: HexAddress | str,
    freshly_deployed: bool,
    initializer: CallSpec | None = None,
    upgrade_call: CallSpec | None = None,
) -> CallSpec | None:
    """Pick the call bundled with an upgrade.

    A proxy still pointing at the placeholder, or created in this run,
    gets its initializer. An installed proxy gets the migration call.
    """
    if freshly_deployed or current.lower() == placeholder.lower():
        return initializer
    return upgrade_call


class SignerResolver:
    """Find who can sign for an owner address."""

    def __init__(
        self,
        chain: ChainRPC,
        signer: TransactionSigner,
        default_signer: TransactionSigner | None = None,
        multisig_proposer: MultisigProposer | None = None,
    ):
        self.chain = chain
        self.signer = signer
        self.default_signer = default_signer
        self.multisig_proposer = multisig_proposer

    def resolve(self, address: HexAddress | str) -> TransactionSigner:
        """Get a signer for ``address``.

        :raise SignerUnavailable:
            If the address is not ours, not a contract and not unlocked on the node
        """
        address = Web3.to_checksum_address(address)
        if address == self.signer.address:
            return self.signer

        if self.default_signer is not None and address == self.default_signer.address:
            return self.default_signer

        if self.chain.has_code(address):
            if self.multisig_proposer is None:
                raise SignerUnavailable(f"Owner {address} is a contract, but no multisig proposer configured")
            return MultisigSigner(address, self.multisig_proposer)

        if address in [Web3.to_checksum_address(a) for a in self.chain.get_signers()]:
            return NodeAccountSigner(address)

        raise SignerUnavailable(f"No signer available for {address}")


class ProxyKind(ABC):
    """One proxy flavour."""

    def __init__(self, proxy: ContractHandle, authority: ContractHandle):
        self.proxy = proxy
        self.authority = authority

    def __repr__(self):
        return f"<{self.__class__.__name__} proxy {self.proxy.address} authority {self.authority.address}>"

    @property
    def chain(self) -> ChainRPC:
        return self.proxy.chain

    def owner(self) -> HexAddress:
        """Who can upgrade."""
        return Web3.to_checksum_address(self.authority.call("owner"))

    def transfer_ownership(self, new_owner: HexAddress | str, signer: TransactionSigner) -> SubmittedTransaction:
        return self.authority.transact("transferOwnership", Web3.to_checksum_address(new_owner), signer=signer)

    @abstractmethod
    def current_implementation(self) -> HexAddress:
        """Read the live implementation."""

    @abstractmethod
    def upgrade(self, desired: HexAddress | str, data: bytes | None, signer: TransactionSigner) -> list[SubmittedTransaction]:
        """Submit the upgrade transactions."""


class TransparentProxy(ProxyKind):
    """Proxy upgraded through a ``ProxyAdmin``."""

    def current_implementation(self) -> HexAddress:
        return Web3.to_checksum_address(self.authority.call("getProxyImplementation", self.proxy.address))

    def upgrade(self, desired: HexAddress | str, data: bytes | None, signer: TransactionSigner) -> list[SubmittedTransaction]:
        desired = Web3.to_checksum_address(desired)
        if data:
            return [self.authority.transact("upgradeAndCall", self.proxy.address, desired, data, signer=signer)]
        return [self.authority.transact("upgrade", self.proxy.address, desired, signer=signer)]


class BeaconProxy(ProxyKind):
    """Proxy following an ``UpgradeableBeacon``.

    The beacon cannot call into proxies, so a bundled call is sent
    to the proxy as a follow-up transaction.
    """

    def current_implementation(self) -> HexAddress:
        return Web3.to_checksum_address(self.authority.call("implementation"))

    def upgrade(self, desired: HexAddress | str, data: bytes | None, signer: TransactionSigner) -> list[SubmittedTransaction]:
        txs = [self.authority.transact("upgradeTo", Web3.to_checksum_address(desired), signer=signer)]
        if data:
            tx_hash = signer.send_transaction(self.chain, {"to": self.proxy.address, "data": data})
            txs.append(
                SubmittedTransaction(
                    sender=signer.address,
                    tx_hash=tx_hash,
                    proposed=signer.is_multisig,
                    description=f"upgrade call on beacon proxy {self.proxy.address}",
                )
            )
        return txs


def upgrade_proxy(
    kind: ProxyKind,
    implementation: HexAddress | str,
    resolver: SignerResolver,
    placeholder: HexAddress | str,
    freshly_deployed: bool = False,
    initializer: CallSpec | None = None,
    upgrade_call: CallSpec | None = None,
    implementation_factory: ContractFactory | None = None,
    confirmations: int | None = None,
) -> bool:
    """Point a proxy at ``implementation`` if it does not already.

    :return:
        True if upgrade transactions were submitted or proposed
    """
    implementation = Web3.to_checksum_address(implementation)
    current = kind.current_implementation()
    if current == implementation:
        logger.debug("%s already at implementation %s", kind, implementation)
        return False

    spec = select_upgrade_call(current, placeholder, freshly_deployed, initializer, upgrade_call)
    data = encode_call_spec(spec, implementation_factory)

    owner = kind.owner()
    signer = resolver.resolve(owner)
    logger.info("Upgrading %s from %s to %s, signer %s, call %s", kind, current, implementation, signer, spec)
    for tx in kind.upgrade(implementation, data, signer):
        wait_for_transaction(kind.chain, tx, confirmations)
    return True


def transfer_proxy_ownership(
    kind: ProxyKind,
    new_owner: HexAddress | str,
    resolver: SignerResolver,
    confirmations: int | None = None,
) -> bool:
    """Hand the admin or beacon over to ``new_owner``.

    :return:
        False if ``new_owner`` already owns it
    """
    new_owner = Web3.to_checksum_address(new_owner)
    owner = kind.owner()
    if owner == new_owner:
        logger.debug("%s already owned by %s", kind, new_owner)
        return False
    signer = resolver.resolve(owner)
    logger.info("Transferring ownership of %s from %s to %s", kind.authority, owner, new_owner)
    wait_for_transaction(kind.chain, kind.transfer_ownership(new_owner, signer), confirmations)
    return True


@dataclass(slots=True)
class ProxyInstallation:
    """Outcome of installing or upgrading one proxy."""

    #: Proxy address with the implementation ABI
    handle: ContractHandle

    kind: ProxyKind

    #: The proxy was created in this run
    freshly_deployed: bool

    #: Upgrade transactions were sent or proposed in this run
    upgraded: bool


def install_transparent_proxy(
    templates: TemplateRegistry,
    resolver: SignerResolver,
    id: str,
    implementation: ContractHandle,
    salt: Salt = 0,
    proxy_admin: HexAddress | str | None = None,
    initializer: CallSpec | None = None,
    upgrade_call: CallSpec | None = None,
    confirmations: int | None = None,
) -> ProxyInstallation:
    """Create or upgrade a transparent proxy.

    An existing proxy keeps the admin found in its storage.
    A new proxy gets ``proxy_admin``, or the signer's own proxy admin.
    """
    chain = templates.chain
    admin_factory = templates.factory(PROXY_ADMIN)
    address = templates.transparent_proxy_address(id, salt)

    if chain.has_code(address):
        admin = ContractHandle(chain, admin_factory, read_admin_address(chain, address), templates.signer, confirmations=confirmations)
    elif proxy_admin is not None:
        admin = ContractHandle(chain, admin_factory, proxy_admin, templates.signer, confirmations=confirmations)
    else:
        admin = templates.proxy_admin()
        admin.wait_deployed()

    proxy = templates.transparent_proxy(id, admin.address, salt)
    proxy.wait_deployed()

    kind = TransparentProxy(proxy, admin)
    upgraded = upgrade_proxy(
        kind,
        implementation.address,
        resolver,
        templates.placeholder_address,
        freshly_deployed=proxy.newly_deployed,
        initializer=initializer,
        upgrade_call=upgrade_call,
        implementation_factory=implementation.factory,
        confirmations=confirmations,
    )
    return ProxyInstallation(proxy.with_factory(implementation.factory), kind, proxy.newly_deployed, upgraded)


def install_beacon_proxy(
    templates: TemplateRegistry,
    resolver: SignerResolver,
    id: str,
    implementation: ContractHandle,
    salt: Salt = 0,
    beacon_id: str | None = None,
    initializer: CallSpec | None = None,
    upgrade_call: CallSpec | None = None,
    confirmations: int | None = None,
) -> ProxyInstallation:
    """Create or upgrade a beacon proxy.

    - The beacon is upgraded first

    - A new proxy runs its initializer in the deployment transaction. If the beacon
      upgrade was only proposed, the proxy is not created before the upgrade is executed

    - An existing proxy gets the initializer or upgrade call as a follow-up

    :param beacon_id:
        Share a beacon between proxies, defaults to ``id``

    :raise BeaconUpgradePending:
        A new proxy with an initializer waits for a proposed beacon upgrade
    """
    chain = templates.chain
    beacon = templates.upgradeable_beacon(beacon_id or id, salt)
    beacon.wait_deployed()

    address = templates.beacon_proxy_address(beacon.address, id, salt)
    fresh = not chain.has_code(address)
    placeholder = templates.placeholder_address
    proxy_factory = templates.factory(BEACON_PROXY)
    kind = BeaconProxy(ContractHandle(chain, proxy_factory, address, templates.signer), beacon)

    if fresh:
        upgraded = upgrade_proxy(kind, implementation.address, resolver, placeholder, confirmations=confirmations)
        calls = []
        init_data = encode_call_spec(initializer, implementation.factory)
        if init_data:
            if kind.current_implementation() != implementation.address:
                raise BeaconUpgradePending(f"Beacon {beacon.address} does not point to {implementation.address} yet, proxy {id} is created once the beacon upgrade is executed")
            calls.append(init_data)
        proxy = templates.beacon_proxy(beacon.address, id, salt, calls=calls)
        proxy.wait_deployed()
    else:
        proxy = ContractHandle(chain, proxy_factory, address, templates.signer, confirmations=confirmations)
        upgraded = upgrade_proxy(
            kind,
            implementation.address,
            resolver,
            placeholder,
            initializer=initializer,
            upgrade_call=upgrade_call,
            implementation_factory=implementation.factory,
            confirmations=confirmations,
        )

    return ProxyInstallation(proxy.with_factory(implementation.factory), kind, fresh, upgraded)


def get_beacon(chain: ChainRPC, templates: TemplateRegistry, proxy: HexAddress | str) -> ContractHandle:
    """Beacon handle for an existing beacon proxy."""
    return ContractHandle(chain, templates.factory(UPGRADEABLE_BEACON), read_beacon_address(chain, proxy), templates.signer)
