"""Multi-phase deployment and upgrade pipeline.

:py:class:`Environment` takes a set of :py:class:`eth_deployer.dependency.DependencyConfig`
nodes and drives them through the lifecycle phases:

1. **Deploy** the contract, install or upgrade its proxy, record it in the registry
2. **Roles** are granted where missing
3. **Initialize** contracts the registry has not seen initialized
4. **Configure** contracts whose settings changed since the last run
5. **Finalize**, including handing proxy admins and beacons to their final owners

Each phase sorts its nodes with its own dependency edges. A node whose
deploy or initialize fails is dropped from later phases together with
everything depending on it, other nodes carry on. All failures are raised
together as :py:class:`UpgradeFailed` at the end of the run.

Running the same suite again is a no-op when nothing changed.

Example:

.. code-block:: python

    admin = DependencyConfig(ContractConfiguration("AccessManager", deploy_options=DeployOptions(args=[owner])))
    token = DependencyConfig(
        lambda settings, addresses: ContractConfiguration(
            "Token",
            proxy=TransparentProxyConfig(initializer=FunctionCall("initialize", [addresses["accessManager"]])),
        ),
        [admin],
    )

    env = Environment(chain, artifacts, [admin, token], settings={"fee": 30})
    contracts = env.upgrade()

"""

import copy
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Sequence

from eth_typing import HexAddress
from web3 import Web3

from eth_deployer.abi import ArtifactSource, ContractFactory
from eth_deployer.address import Salt, generate_salt
from eth_deployer.chain import ChainRPC, Web3ChainRPC
from eth_deployer.config import EnvironmentConfig
from eth_deployer.configuration import (
    BeaconProxyConfig,
    CallbackContext,
    ConfigurationSet,
    ContractConfiguration,
    ProxyDeploymentState,
    TransparentProxyConfig,
    resolve_configuration,
)
from eth_deployer.confirmation import TransactionFailed
from eth_deployer.contract import ContractHandle
from eth_deployer.dependency import DependencyConfig, Phase, sort_dependencies
from eth_deployer.deployer import ContractDeploymentFailed, Deployer
from eth_deployer.interfaces import PROXY_ADMIN
from eth_deployer.proxy import (
    BeaconProxy,
    ProxyInstallation,
    ProxyKind,
    SignerResolver,
    TransparentProxy,
    get_beacon,
    install_beacon_proxy,
    install_transparent_proxy,
    read_admin_address,
    read_implementation_address,
    transfer_proxy_ownership,
)
from eth_deployer.registry import DeploymentInfo, Registry, settings_id
from eth_deployer.roles import RoleManager, RoleNotRegistered
from eth_deployer.signer import HotWalletSigner, MultisigProposer, NodeAccountSigner, SafeTransactionProposer, TransactionSigner
from eth_deployer.templates import TemplateRegistry
from eth_deployer.verify import ContractVerifier, VerificationFailed, VerificationRequest, verify_contract

logger = logging.getLogger(__name__)


class DependencyFailed(Exception):
    """A dependency of the node failed earlier in the run."""


@dataclass(slots=True)
class ErrorDetails:
    """One failure during a run."""

    #: Configuration id
    id: str

    error: Exception

    #: What we were doing
    details: str

    #: The node is excluded from the rest of the run
    stop_progression: bool

    phase: Phase | None = None


class UpgradeFailed(Exception):
    """One or more configurations failed.

    Everything else was deployed and configured, rerunning repairs only the failures.
    """

    def __init__(self, errors: list[ErrorDetails]):
        lines = [f"[{e.id}] {e.details}. {e.error}" for e in errors]
        super().__init__("[UPGRADE FAILED]\n" + "\n".join(lines))
        self.errors = errors


class Environment:
    """Deploy, upgrade and configure a suite of contracts.

    One environment is one run context. It owns the address map, the
    contract handles and the error records of the run.
    """

    def __init__(
        self,
        chain: ChainRPC,
        artifacts: ArtifactSource,
        dependencies: Sequence[DependencyConfig],
        settings: dict | None = None,
        config: EnvironmentConfig | None = None,
        signer: TransactionSigner | None = None,
        multisig_proposer: MultisigProposer | None = None,
        default_signer: TransactionSigner | None = None,
    ):
        """
        :param chain:
            Chain RPC

        :param artifacts:
            Compile collaborator

        :param dependencies:
            Configuration nodes, in registration order

        :param settings:
            Run settings passed to configuration functions and hooks

        :param config:
            Run configuration, read from environment variables if not given

        :param signer:
            Deployer account. If not given, a hot wallet from ``PRIVATE_KEY``
            or the first node account

        :param multisig_proposer:
            Proposes transactions for owners that are multisig contracts

        :param default_signer:
            Second account we control, e.g. a previous deployer
        """
        self.chain = chain
        self.artifacts = artifacts
        self.dependencies = list(dependencies)
        self.config = config or EnvironmentConfig.from_env()

        #: Settings as given, every run starts from these
        self.initial_settings = copy.deepcopy(settings or {})
        self.settings = copy.deepcopy(self.initial_settings)

        if signer is None:
            if self.config.private_key:
                signer = HotWalletSigner.from_private_key(self.config.private_key, self.config.gas_price_multiplier)
            else:
                signer = NodeAccountSigner(chain.get_signers()[0])
        self.signer = signer

        if multisig_proposer is None and self.config.safe_service_url:
            multisig_proposer = self._create_safe_proposer()
        self.multisig_proposer = multisig_proposer

        self.deployer = Deployer(
            chain,
            signer,
            self.config.deployer_address,
            self.config.default_salt,
            self.config.confirmations,
        )
        self.templates = TemplateRegistry(self.deployer, artifacts)
        self.resolver = SignerResolver(chain, signer, default_signer, multisig_proposer)

        self.registry: Registry | None = None
        self.errors: list[ErrorDetails] = []
        self.contracts: dict[str, ContractHandle] = {}
        self.implementations: dict[str, ContractHandle] = {}
        self.installations: dict[str, ProxyInstallation] = {}

        self._configurations: ConfigurationSet | None = None
        self._addresses: dict[str, HexAddress] = {}
        self._records: dict[str, DeploymentInfo] = {}

        # Per-run bookkeeping by configuration id
        self._deployed_ids: set[str] = set()
        self._changed_ids: set[str] = set()
        self._initialized_ids: set[str] = set()
        self._configured_ids: set[str] = set()

    def __repr__(self):
        return f"<Environment {len(self.dependencies)} configurations, signer {self.signer.address}>"

    def _create_safe_proposer(self) -> SafeTransactionProposer:
        """Safe proposals need a web3 connection and a local proposer key."""
        assert isinstance(self.chain, Web3ChainRPC), f"SAFE_SERVICE_URL needs a web3 chain connection, got {self.chain}"
        assert isinstance(self.signer, HotWalletSigner), f"SAFE_SERVICE_URL needs a hot wallet signer to propose with, got {self.signer}"
        return SafeTransactionProposer(self.chain.web3, self.signer.account, self.config.safe_service_url)

    #
    # Loading
    #

    @property
    def configurations(self) -> ConfigurationSet:
        self.load()
        return self._configurations

    @property
    def addresses(self) -> dict[str, HexAddress]:
        """Deterministic address of every configuration, by id.

        Computed without transactions.
        """
        self.load()
        return dict(self._addresses)

    def reload(self):
        """Forget resolved configurations, e.g. after settings changed."""
        self._configurations = None
        self._addresses = {}

    def load(self):
        """Resolve configurations and their addresses.

        Deferred configurations see the addresses of the configurations they depend on.

        :raise eth_deployer.dependency.MissingDependencies:
            Address dependencies cannot be satisfied

        :raise eth_deployer.configuration.DuplicateConfigurationId:
            Two configurations share an id
        """
        if self._configurations is not None:
            return

        self.deployer.validate()

        configurations = ConfigurationSet()
        addresses = {}
        for node in sort_dependencies(self.dependencies, Phase.address):
            config = resolve_configuration(node.config, copy.deepcopy(self.settings), dict(addresses))
            configurations.add(node, config)
            addresses[config.id] = self._compute_address(config, addresses)
            logger.debug("Configuration %s: %s at %s", config.id, config.contract_name, addresses[config.id])

        self._configurations = configurations
        self._addresses = addresses

    def get_factory(self, contract: str | ContractFactory) -> ContractFactory:
        if isinstance(contract, ContractFactory):
            return contract
        return self.artifacts.get_factory(contract)

    def _default_salt(self, salt: Salt | None) -> Salt:
        return self.config.default_salt if salt is None else salt

    def _contract_salt(self, config: ContractConfiguration, options) -> bytes:
        return generate_salt(options.id or config.id, self._default_salt(options.salt))

    def _proxy_id(self, config: ContractConfiguration) -> str:
        return config.proxy.id or config.id

    def _proxy_address(self, config: ContractConfiguration) -> HexAddress:
        proxy = config.proxy
        salt = self._default_salt(proxy.salt)
        if isinstance(proxy, TransparentProxyConfig):
            return self.templates.transparent_proxy_address(self._proxy_id(config), salt)
        assert isinstance(proxy, BeaconProxyConfig), f"Unknown proxy descriptor {proxy}"
        beacon = self.templates.upgradeable_beacon_address(proxy.beacon_id or self._proxy_id(config), salt)
        return self.templates.beacon_proxy_address(beacon, self._proxy_id(config), salt)

    def _compute_address(self, config: ContractConfiguration, addresses: dict[str, HexAddress]) -> HexAddress:
        if config.proxy is not None:
            return self._proxy_address(config)
        ctx = self._context(config.id, addresses)
        options = config.get_deploy_options(ctx, None)
        factory = self.get_factory(config.contract)
        return self.deployer.factory_address(factory, options.args, self._contract_salt(config, options))

    def _context(self, id: str, addresses: dict[str, HexAddress] | None = None) -> CallbackContext:
        return CallbackContext(
            id=id,
            contract=self.contracts.get(id),
            contracts=dict(self.contracts),
            addresses=dict(self._addresses if addresses is None else addresses),
            settings=copy.deepcopy(self.settings),
            signer=self.signer,
            environment=self,
        )

    def get_signer(self, address: HexAddress | str) -> TransactionSigner:
        """Signer for an address we control, a multisig proposer, or a node account."""
        return self.resolver.resolve(address)

    #
    # Error bookkeeping
    #

    def _record_error(self, id: str, error: Exception, details: str, stop_progression: bool, phase: Phase | None = None):
        if self.config.fail_on_error:
            raise error
        logger.error("[%s] %s: %s", id, details, error, exc_info=error)
        self.errors.append(ErrorDetails(id, error, details, stop_progression, phase))

    def can_progress(self, id: str) -> bool:
        """Has the id not hit a failure excluding it from later phases."""
        return not any(e.id == id and e.stop_progression for e in self.errors)

    def _check_errors(self):
        if self.errors:
            raise UpgradeFailed(self.errors)

    def _phase_nodes(self, phase: Phase, relevant: Callable[[ContractConfiguration], bool]) -> list[DependencyConfig]:
        """Nodes taking part in a phase, in dependency order.

        Blocked nodes block their dependers. Irrelevant nodes are dropped
        before sorting and count as satisfied dependencies.
        """
        configurations = self.configurations
        nodes = self.dependencies

        blocked = {id(n) for n in nodes if not self.can_progress(configurations.for_node(n).id)}
        changed = True
        while changed:
            changed = False
            for node in nodes:
                if id(node) in blocked:
                    continue
                failed = [d for d in node.get_dependencies(phase) if id(d) in blocked]
                if failed:
                    blocked.add(id(node))
                    changed = True
                    failed_ids = ", ".join(configurations.for_node(d).id for d in failed)
                    self._record_error(
                        configurations.for_node(node).id,
                        DependencyFailed(f"Dependencies failed: {failed_ids}"),
                        f"Skipped {phase.value}",
                        stop_progression=True,
                        phase=phase,
                    )

        selected = [n for n in nodes if id(n) not in blocked and relevant(configurations.for_node(n))]
        selected_ids = {id(n) for n in selected}
        satisfied = [n for n in nodes if id(n) not in selected_ids]
        return sort_dependencies(selected, phase, satisfied)

    def _dependency_failed(self, node: DependencyConfig, phase: Phase) -> bool:
        """Check dependencies that failed earlier in the same phase."""
        configurations = self.configurations
        failed = [configurations.for_node(d).id for d in node.get_dependencies(phase) if not self.can_progress(configurations.for_node(d).id)]
        if not failed:
            return False
        self._record_error(
            configurations.for_node(node).id,
            DependencyFailed(f"Dependencies failed: {', '.join(failed)}"),
            f"Skipped {phase.value}",
            stop_progression=True,
            phase=phase,
        )
        return True

    #
    # Phases
    #

    def _start_run(self):
        self.settings = copy.deepcopy(self.initial_settings)
        self.load()
        self.errors = []
        self.contracts = {}
        self.implementations = {}
        self.installations = {}
        self._deployed_ids = set()
        self._changed_ids = set()
        self._initialized_ids = set()
        self._configured_ids = set()
        self.registry = Registry.from_deployer(self.deployer, self.artifacts)
        self._records = self.registry.deployment_info(self._addresses)

    def upgrade(self) -> dict[str, ContractHandle]:
        """Run all phases.

        :raise eth_deployer.deployer.DeployerNotBootstrapped:
            The shared deployer is missing on this chain

        :raise eth_deployer.dependency.MissingDependencies:
            The dependency graph cannot be satisfied

        :raise UpgradeFailed:
            Some configurations failed, the others were completed

        :return:
            Contract handles by configuration id. Proxies have the implementation ABI.
        """
        self._start_run()

        logger.info("Upgrading %d configurations on chain %d, signer %s", len(self._addresses), self.chain.chain_id(), self.signer.address)

        try:
            self._deploy_phase()
            self._roles_phase()
            self._initialize_phase()
            self._configure_phase()
            self._finalize_phase()
        finally:
            # Keep records of what was done even when the run is cut short
            self.registry.sync()

        self._check_errors()

        logger.info("Upgrade complete")
        return dict(self.contracts)

    def configure(self) -> dict[str, ContractHandle]:
        """Run only the configure phase against already deployed contracts."""
        self._start_run()
        for config in self.configurations:
            address = self._addresses[config.id]
            if config.id not in self.contracts and self.chain.has_code(address):
                self.contracts[config.id] = ContractHandle(self.chain, self.get_factory(config.contract), address, self.signer, confirmations=self.config.confirmations)
        try:
            self._configure_phase()
        finally:
            self.registry.sync()
        self._check_errors()
        return dict(self.contracts)

    def _deploy_phase(self):
        for node in self._phase_nodes(Phase.deploy, lambda c: True):
            if self._dependency_failed(node, Phase.deploy):
                continue
            config = self.configurations.for_node(node)
            try:
                self._deploy_contract(config)
            except Exception as e:
                self._record_error(config.id, e, "Deployment failed", stop_progression=True, phase=Phase.deploy)
                continue

            if config.deployed is not None:
                try:
                    config.deployed(self._context(config.id))
                except Exception as e:
                    self._record_error(config.id, e, "Deployed callback failed", stop_progression=False, phase=Phase.deploy)

    def _deploy_contract(self, config: ContractConfiguration):
        factory = self.get_factory(config.contract)

        proxy_state = None
        if config.proxy is not None:
            proxy_address = self._addresses[config.id]
            proxy_state = ProxyDeploymentState(proxy_address, self.chain.has_code(proxy_address))

        options = config.get_deploy_options(self._context(config.id), proxy_state)
        handle = self.deployer.deploy(
            factory,
            options.args,
            salt=self._contract_salt(config, options),
            calls=options.calls,
            overrides=options.overrides,
        )
        try:
            handle.wait_deployed()
        except TransactionFailed as e:
            raise ContractDeploymentFailed(e.tx_hash, f"Deploying {config.contract_name} reverted") from e

        deploy_tx = handle.deploy_transaction
        upgraded = False

        if config.proxy is not None:
            self.implementations[config.id] = handle
            installation = self._install_proxy(config, handle)
            self.installations[config.id] = installation
            upgraded = installation.upgraded
            handle = installation.handle
            if installation.freshly_deployed and handle.deploy_transaction is not None:
                deploy_tx = handle.deploy_transaction
        elif handle.address != self._addresses[config.id]:
            logger.warning("%s deployed at %s, expected %s, deploy options changed since loading", config.id, handle.address, self._addresses[config.id])
            self._addresses[config.id] = handle.address

        self.contracts[config.id] = handle

        if deploy_tx is not None:
            self._deployed_ids.add(config.id)
            record = self._records.get(config.id)
            if record is None or not record.registered:
                self.registry.set_deployment_info(handle.address, deploy_tx, settings_id(self.settings))
        else:
            record = self._records.get(config.id)
            if record is not None and record.deployed and not record.registered:
                # An earlier run stopped before writing its registry records
                logger.warning("%s has code at %s but no registry record, registering it now", config.id, handle.address)
                self.registry.register_existing(handle.address, settings_id(self.settings))
                self._deployed_ids.add(config.id)

        if deploy_tx is not None or upgraded:
            self._changed_ids.add(config.id)
            logger.info("Deployed %s at %s", config.id, handle.address)
        else:
            logger.info("%s up to date at %s", config.id, handle.address)

    def _install_proxy(self, config: ContractConfiguration, implementation: ContractHandle) -> ProxyInstallation:
        proxy = config.proxy
        salt = self._default_salt(proxy.salt)
        if isinstance(proxy, TransparentProxyConfig):
            return install_transparent_proxy(
                self.templates,
                self.resolver,
                self._proxy_id(config),
                implementation,
                salt=salt,
                proxy_admin=proxy.proxy_admin,
                initializer=proxy.initializer,
                upgrade_call=proxy.upgrade_call,
                confirmations=self.config.confirmations,
            )
        return install_beacon_proxy(
            self.templates,
            self.resolver,
            self._proxy_id(config),
            implementation,
            salt=salt,
            beacon_id=proxy.beacon_id,
            initializer=proxy.initializer,
            upgrade_call=proxy.upgrade_call,
            confirmations=self.config.confirmations,
        )

    def _roles_phase(self):
        manager = RoleManager(self.signer, self.config.confirmations)
        active = [c for c in self.configurations if c.id in self.contracts and self.can_progress(c.id)]

        for config in active:
            admin = None
            if config.role_admin:
                try:
                    admin = self.get_signer(config.role_admin)
                except Exception as e:
                    self._record_error(config.id, e, "No signer for role admin", stop_progression=False)
            manager.register_config(config.id, self.contracts[config.id], config.roles, admin)

        for config in active:
            for request in config.required_roles:
                try:
                    manager.request(config.id, self.contracts[config.id].address, request)
                except RoleNotRegistered as e:
                    self._record_error(config.id, e, f"Cannot request role {request}", stop_progression=False)

        for failure in manager.grant_all():
            for requester in failure.requesters:
                self._record_error(requester, failure.error, f"Granting {failure.role} on {failure.contract} failed", stop_progression=False)

    def _apply_prepare(self, hook, id: str):
        new_settings = hook(self._context(id))
        if new_settings is not None:
            assert isinstance(new_settings, dict), f"{id} prepare hook must return a dict, got {type(new_settings)}"
            self.settings = new_settings

    def _needs_initialize(self, config: ContractConfiguration) -> bool:
        if self.config.is_forced_initialize(config.id):
            return True
        record = self._records.get(config.id)
        if record is not None and record.initialized:
            return False
        if config.id in self._deployed_ids or (record is not None and record.registered):
            return True
        logger.warning("%s not initialized, but not in registry or deployed in this run, skipping initialize", config.id)
        return False

    def _initialize_phase(self):
        nodes = self._phase_nodes(
            Phase.initialize,
            lambda c: c.has_initialize_phase() and c.id in self.contracts and self._needs_initialize(c),
        )
        for node in nodes:
            if self._dependency_failed(node, Phase.initialize):
                continue
            config = self.configurations.for_node(node)
            handle = self.contracts[config.id]
            try:
                if config.prepare_initialize is not None:
                    self._apply_prepare(config.prepare_initialize, config.id)
                if config.initialize is not None:
                    logger.info("Initializing %s", config.id)
                    config.initialize(self._context(config.id))
                    self.registry.set_initialized(handle.address, settings_id(self.settings))
                    self._initialized_ids.add(config.id)
            except Exception as e:
                self._record_error(config.id, e, "Initialization failed", stop_progression=True, phase=Phase.initialize)
                continue

            if config.initialized is not None:
                try:
                    config.initialized(self._context(config.id))
                except Exception as e:
                    self._record_error(config.id, e, "Initialized callback failed", stop_progression=False, phase=Phase.initialize)

    def _configure_phase(self):
        nodes = self._phase_nodes(Phase.configure, lambda c: c.has_configure_phase() and c.id in self.contracts)
        for node in nodes:
            config = self.configurations.for_node(node)
            if config.id in self._configured_ids:
                continue
            if self._dependency_failed(node, Phase.configure):
                continue
            self.configure_one(config.id)

    def configure_one(self, id: str):
        """Configure one contract now, out of order.

        Hooks use this through :py:meth:`CallbackContext.configure`.
        """
        config = self.configurations.get(id)
        if id in self._configured_ids:
            return
        self._configured_ids.add(id)

        handle = self.contracts.get(id)
        if handle is None or not self.can_progress(id):
            logger.warning("Cannot configure %s, not deployed in this run", id)
            return

        try:
            if config.prepare_configure is not None:
                self._apply_prepare(config.prepare_configure, id)

            current = settings_id(self.settings)
            record = self._records.get(id)
            unchanged = (
                record is not None
                and record.last_configure_settings == current
                and id not in self._changed_ids
                and id not in self._initialized_ids
            )
            if config.configure is None:
                pass
            elif unchanged and not self.config.is_forced_configure(id):
                logger.info("%s already configured with settings %s", id, current.hex())
            else:
                logger.info("Configuring %s", id)
                config.configure(self._context(id))
                self.registry.set_configured(handle.address, current)
        except Exception as e:
            self._record_error(id, e, "Configuration failed", stop_progression=config.stop_on_configure_failure, phase=Phase.configure)
            return

        if config.configured is not None:
            try:
                config.configured(self._context(id))
            except Exception as e:
                self._record_error(id, e, "Configured callback failed", stop_progression=False, phase=Phase.configure)

    def _finalize_phase(self):
        nodes = self._phase_nodes(Phase.finalize, lambda c: c.has_finalize_phase() and c.id in self.contracts)
        for node in nodes:
            if self._dependency_failed(node, Phase.finalize):
                continue
            config = self.configurations.for_node(node)
            try:
                if config.prepare_finalize is not None:
                    self._apply_prepare(config.prepare_finalize, config.id)
                if config.finalize is not None:
                    logger.info("Finalizing %s", config.id)
                    config.finalize(self._context(config.id))
                self._transfer_ownership(config)
            except Exception as e:
                self._record_error(config.id, e, "Finalization failed", stop_progression=True, phase=Phase.finalize)
                continue

            if config.finalized is not None:
                try:
                    config.finalized(self._context(config.id))
                except Exception as e:
                    self._record_error(config.id, e, "Finalized callback failed", stop_progression=False, phase=Phase.finalize)

    def _proxy_kind(self, config: ContractConfiguration) -> ProxyKind:
        installation = self.installations.get(config.id)
        if installation is not None:
            return installation.kind
        proxy = self.contracts[config.id]
        if isinstance(config.proxy, TransparentProxyConfig):
            admin = ContractHandle(self.chain, self.templates.factory(PROXY_ADMIN), read_admin_address(self.chain, proxy.address), self.signer)
            return TransparentProxy(proxy, admin)
        return BeaconProxy(proxy, get_beacon(self.chain, self.templates, proxy.address))

    def _transfer_ownership(self, config: ContractConfiguration):
        if config.proxy is None or config.proxy.owner is None:
            return
        kind = self._proxy_kind(config)
        transfer_proxy_ownership(kind, config.proxy.owner, self.resolver, self.config.confirmations)

    #
    # Helpers for hooks
    #

    def deploy_helper(self, contract: str | ContractFactory, args: Sequence = (), salt: Salt | None = None, id: str | None = None, calls: Sequence = ()) -> ContractHandle:
        handle = self.deployer.deploy(self.get_factory(contract), args, salt=salt, id=id, calls=calls)
        try:
            handle.wait_deployed()
        except TransactionFailed as e:
            raise ContractDeploymentFailed(e.tx_hash, f"Deploying {handle.name} reverted") from e
        return handle

    #
    # Verification
    #

    def _implementation_address(self, config: ContractConfiguration, proxy_address: HexAddress) -> HexAddress:
        if config.id in self.implementations:
            return self.implementations[config.id].address
        if isinstance(config.proxy, TransparentProxyConfig):
            return read_implementation_address(self.chain, proxy_address)
        beacon = get_beacon(self.chain, self.templates, proxy_address)
        return Web3.to_checksum_address(beacon.call("implementation"))

    def _verification_request(self, config: ContractConfiguration) -> VerificationRequest | None:
        factory = self.get_factory(config.contract)
        address = self._addresses[config.id]
        if not self.chain.has_code(address):
            return None

        proxy_state = None
        if config.proxy is not None:
            proxy_state = ProxyDeploymentState(address, True)
            address = self._implementation_address(config, address)

        options = config.get_deploy_options(self._context(config.id), proxy_state)
        return VerificationRequest(
            id=config.id,
            address=address,
            contract_name=config.contract_name,
            constructor_args=factory.encode_constructor_args(options.args),
        )

    def verify(self, verifier: ContractVerifier, max_workers: int = 3, attempts: int = 3, interval: float = 3.0) -> dict[str, bool]:
        """Verify every deployed contract, proxies by their implementation.

        Verification is read-only for the chain, so it runs in a bounded thread pool.

        :param attempts:
            Tries per contract

        :param interval:
            Base sleep between tries, in seconds

        :return:
            Configuration id -> verified
        """
        requests = [r for r in (self._verification_request(c) for c in self.configurations) if r is not None]
        results = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_request = {executor.submit(verify_contract, verifier, r, attempts, interval): r for r in requests}
            for future in as_completed(future_to_request):
                request = future_to_request[future]
                try:
                    results[request.id] = future.result()
                except VerificationFailed as e:
                    logger.error("Verification of %s failed: %s", request.id, e)
                    results[request.id] = False
        return results
