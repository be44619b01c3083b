"""Contract configurations and the context passed to lifecycle hooks.

A configuration describes one logical contract of the suite: what to
deploy, whether it sits behind a proxy, which roles it needs and what to do
in each lifecycle phase.

.. code-block:: python

    def initialize(ctx: CallbackContext):
        ctx.transact("initialize", ctx.settings["owner"])

    token = ContractConfiguration(
        "Token",
        deploy_options=DeployOptions(args=["Token", "TKN"]),
        proxy=TransparentProxyConfig(),
        required_roles=[Role("MINTER_ROLE")],
        initialize=initialize,
    )

Configurations can also be deferred: a function of the run settings
and the addresses computed so far, returning the configuration.
"""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Sequence

from eth_typing import HexAddress

from eth_deployer.abi import ContractFactory
from eth_deployer.address import Salt
from eth_deployer.confirmation import wait_for_transaction
from eth_deployer.contract import ContractHandle
from eth_deployer.dependency import DependencyConfig
from eth_deployer.proxy import CallSpec
from eth_deployer.roles import Role, RoleRequest
from eth_deployer.signer import TransactionSigner

if TYPE_CHECKING:
    from eth_deployer.environment import Environment


class DuplicateConfigurationId(Exception):
    """Two configurations resolved to the same id."""


class InvalidConfiguration(Exception):
    """A configuration could not be resolved."""


_WORDS = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|[^A-Za-z0-9]|$)|[A-Z]?[a-z]+|[A-Z]+|\d+")


def camel_case(name: str) -> str:
    """Default configuration id from a contract name.

    .. code-block:: python

        assert camel_case("ProxyAdmin") == "proxyAdmin"
        assert camel_case("ERC20Token") == "erc20Token"

    """
    words = _WORDS.findall(name)
    if not words:
        return name
    return words[0].lower() + "".join(w.capitalize() for w in words[1:])


@dataclass(slots=True)
class DeployOptions:
    """How to deploy the contract, or the implementation of a proxy."""

    #: Constructor arguments
    args: Sequence = ()

    #: Salt, the run default if not set
    salt: Salt | None = None

    #: Folded into the salt, the configuration id if not set
    id: str | None = None

    #: Post-deploy calls, see :py:meth:`eth_deployer.deployer.Deployer.deploy`
    calls: Sequence = ()

    #: Transaction overrides
    overrides: dict | None = None


@dataclass(slots=True)
class ProxyDeploymentState:
    """What a deploy options function knows about the proxy."""

    #: Deterministic proxy address
    address: HexAddress

    #: The proxy already has code
    deployed: bool


@dataclass(slots=True)
class TransparentProxyConfig:
    """Put the contract behind a transparent proxy."""

    #: Proxy id, the configuration id if not set
    id: str | None = None

    salt: Salt | None = None

    #: Admin for a new proxy, the signer's own proxy admin if not set
    proxy_admin: HexAddress | None = None

    #: Final owner of the proxy admin, transferred in the finalize phase
    owner: HexAddress | None = None

    #: Called when the proxy is first pointed at a real implementation
    initializer: CallSpec | None = None

    #: Called when an installed proxy is upgraded
    upgrade_call: CallSpec | None = None


@dataclass(slots=True)
class BeaconProxyConfig:
    """Put the contract behind a beacon proxy."""

    id: str | None = None

    salt: Salt | None = None

    #: Share a beacon with other proxies, the proxy id if not set
    beacon_id: str | None = None

    #: Final owner of the beacon, transferred in the finalize phase
    owner: HexAddress | None = None

    initializer: CallSpec | None = None

    upgrade_call: CallSpec | None = None


#: Lifecycle hook
Hook = Callable[["CallbackContext"], Any]

#: ``prepare_*`` hooks return new settings, or ``None`` to keep the current ones
PrepareHook = Callable[["CallbackContext"], dict | None]


@dataclass
class ContractConfiguration:
    """One logical contract of the suite."""

    #: Contract name for the compile collaborator, or a factory
    contract: str | ContractFactory

    #: Unique id, camel cased contract name if not set
    id: str | None = None

    #: Static options, or ``fn(ctx, proxy_state) -> DeployOptions``.
    #: ``proxy_state`` is ``None`` for contracts without a proxy.
    deploy_options: DeployOptions | Callable | None = None

    proxy: TransparentProxyConfig | BeaconProxyConfig | None = None

    #: Roles this contract administers
    roles: list[Role] = field(default_factory=list)

    #: Roles this contract needs on other contracts
    required_roles: list[Role | RoleRequest] = field(default_factory=list)

    #: Account granting the roles this contract administers, the run signer if not set
    role_admin: HexAddress | None = None

    deployed: Hook | None = None
    prepare_initialize: PrepareHook | None = None
    initialize: Hook | None = None
    initialized: Hook | None = None
    prepare_configure: PrepareHook | None = None
    configure: Hook | None = None
    configured: Hook | None = None
    prepare_finalize: PrepareHook | None = None
    finalize: Hook | None = None
    finalized: Hook | None = None

    #: Configure failure excludes the contract from the finalize phase
    stop_on_configure_failure: bool = False

    def __post_init__(self):
        if not self.id:
            self.id = camel_case(self.contract_name)

    @property
    def contract_name(self) -> str:
        if isinstance(self.contract, ContractFactory):
            return self.contract.name
        return self.contract

    def get_deploy_options(self, ctx: "CallbackContext", proxy_state: ProxyDeploymentState | None = None) -> DeployOptions:
        if self.deploy_options is None:
            return DeployOptions()
        if isinstance(self.deploy_options, DeployOptions):
            return self.deploy_options
        return self.deploy_options(ctx, proxy_state)

    def has_initialize_phase(self) -> bool:
        return self.initialize is not None or self.prepare_initialize is not None

    def has_configure_phase(self) -> bool:
        return self.configure is not None or self.prepare_configure is not None

    def has_finalize_phase(self) -> bool:
        return any((self.prepare_finalize, self.finalize, self.finalized)) or (self.proxy is not None and self.proxy.owner is not None)


def resolve_configuration(config: Any, settings: dict, addresses: dict[str, HexAddress]) -> ContractConfiguration:
    """Turn a contract name or a deferred configuration into a configuration.

    :raise InvalidConfiguration:
        Unsupported value
    """
    if isinstance(config, ContractConfiguration):
        return config
    if isinstance(config, str):
        return ContractConfiguration(config)
    if isinstance(config, ContractFactory):
        return ContractConfiguration(config)
    if callable(config):
        return resolve_configuration(config(settings, addresses), settings, addresses)
    raise InvalidConfiguration(f"Unsupported configuration: {config}")


class ConfigurationSet:
    """Loaded configurations, one per dependency node, unique by id."""

    def __init__(self):
        self._by_id: dict[str, ContractConfiguration] = {}
        self._by_node: dict[int, ContractConfiguration] = {}
        self._nodes: dict[str, DependencyConfig] = {}

    def __len__(self):
        return len(self._by_id)

    def __contains__(self, id: str):
        return id in self._by_id

    def __iter__(self):
        return iter(self._by_id.values())

    @property
    def ids(self) -> list[str]:
        return list(self._by_id.keys())

    def add(self, node: DependencyConfig, config: ContractConfiguration) -> ContractConfiguration:
        """Intern a configuration for a node.

        :raise DuplicateConfigurationId:
            Another node already uses the id
        """
        existing = self._nodes.get(config.id)
        if existing is not None and existing is not node:
            raise DuplicateConfigurationId(f"Configuration id {config.id} is used by more than one contract configuration")
        self._by_id[config.id] = config
        self._by_node[id(node)] = config
        self._nodes[config.id] = node
        return config

    def get(self, id: str) -> ContractConfiguration:
        return self._by_id[id]

    def for_node(self, node: DependencyConfig) -> ContractConfiguration | None:
        return self._by_node.get(id(node))

    def node(self, id: str) -> DependencyConfig:
        return self._nodes[id]


@dataclass
class CallbackContext:
    """Explicit context passed to every lifecycle hook."""

    #: Configuration id of the hook owner
    id: str

    #: Handle of the hook owner, ``None`` before it is deployed
    contract: ContractHandle | None

    #: Every handle deployed so far in this run, by configuration id
    contracts: dict[str, ContractHandle]

    #: Deterministic addresses of the whole suite, by configuration id
    addresses: dict[str, HexAddress]

    #: Current settings
    settings: dict

    #: Run signer
    signer: TransactionSigner

    environment: "Environment" = field(repr=False)

    @property
    def chain(self):
        return self.environment.chain

    @property
    def deployer(self):
        return self.environment.deployer

    def transact(self, function_name: str, *args, contract: ContractHandle | None = None, signer: TransactionSigner | None = None, **kwargs) -> dict | None:
        """Call a function on the hook owner, or another contract, and wait for it."""
        contract = contract or self.contract
        assert contract is not None, f"{self.id} has no contract yet"
        tx = contract.transact(function_name, *args, signer=signer or self.signer, **kwargs)
        return wait_for_transaction(self.chain, tx, self.environment.config.confirmations)

    def call(self, function_name: str, *args, contract: ContractHandle | None = None) -> Any:
        contract = contract or self.contract
        assert contract is not None, f"{self.id} has no contract yet"
        return contract.call(function_name, *args)

    def deploy(self, contract: str | ContractFactory, args: Sequence = (), salt: Salt | None = None, id: str | None = None, calls: Sequence = ()) -> ContractHandle:
        """Deploy a helper contract deterministically and wait for it."""
        return self.environment.deploy_helper(contract, args, salt, id, calls)

    def configure(self, id: str):
        """Run the configure phase of another configuration now."""
        self.environment.configure_one(id)

    def get_signer(self, address: HexAddress | str) -> TransactionSigner:
        return self.environment.get_signer(address)
