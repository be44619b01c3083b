"""In-process simulated chain for tests.

:py:class:`SimulatedChain` implements :py:class:`eth_deployer.chain.ChainRPC`
and executes Python models of the infrastructure contracts:
the shared CREATE2 deployer, the placeholder, ``ProxyAdmin``,
``TransparentUpgradeableProxy``, ``UpgradeableBeacon``, ``BeaconProxy``,
``DeploymentRegistry``, plus a few application contracts used in tests.

- Contracts are dispatched by function selector, arguments and return values
  go through real ABI encoding

- Every transaction is mined in its own block

- A reverted transaction rolls back all state changes and gets a failed receipt

- Mined transactions are kept in :py:attr:`SimulatedChain.transactions`, so tests can count them

Example:

.. code-block:: python

    chain = SimulatedChain()
    artifacts = chain.artifacts
    signer = NodeAccountSigner(chain.get_signers()[0])
    deployer = Deployer(chain, signer)
    token = deployer.deploy(artifacts.get_factory("Token"), [signer.address])

"""

import copy
import re

import eth_abi
import rlp
from eth_abi.exceptions import DecodingError, EncodingError
from eth_account import Account
from eth_typing import HexAddress
from eth_utils import keccak, to_canonical_address, to_checksum_address
from hexbytes import HexBytes

from eth_deployer.abi import (
    ZERO_ADDRESS,
    ZERO_HASH,
    ContractFactory,
    StaticArtifacts,
    get_abi_input_types,
    get_abi_output_types,
    get_function_selector,
)
from eth_deployer.address import CLONE_PREFIX, CLONE_SUFFIX, CREATE2_DEPLOYER_ADDRESS, create2_address, clone_init_code
from eth_deployer.chain import CallReverted, ChainRPC
from eth_deployer.interfaces import (
    ACCESS_CONTROL_ABI,
    BEACON_PROXY,
    BEACON_PROXY_ABI,
    CREATE2_DEPLOYER_ABI,
    DEPLOYMENT_REGISTRY,
    DEPLOYMENT_REGISTRY_ABI,
    PLACEHOLDER,
    PLACEHOLDER_ABI,
    PROXY_ADMIN,
    PROXY_ADMIN_ABI,
    TRANSPARENT_UPGRADEABLE_PROXY,
    TRANSPARENT_UPGRADEABLE_PROXY_ABI,
    UPGRADEABLE_BEACON,
    UPGRADEABLE_BEACON_ABI,
    _constructor,
    _function,
    _param,
)
from eth_deployer.proxy import ERC1967_ADMIN_SLOT, ERC1967_BEACON_SLOT, ERC1967_IMPLEMENTATION_SLOT
from eth_deployer.roles import DEFAULT_ADMIN_ROLE

#: Block time of the simulated chain
BLOCK_TIME = 12

#: Timestamp of the genesis block
GENESIS_TIMESTAMP = 1_700_000_000


class Revert(Exception):
    """Simulated contract execution reverted."""


def contract_marker(name: str) -> bytes:
    """Fake creation bytecode identifying a simulated contract type."""
    return b"\x60\x80" + keccak(text=name)[:18]


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _address_word(address: HexAddress | str) -> bytes:
    return b"\x00" * 12 + to_canonical_address(address)


def _word_address(word: bytes | None) -> HexAddress:
    if not word:
        return ZERO_ADDRESS
    return to_checksum_address(word[-20:])


class CallContext:
    """Execution frame of one message call."""

    def __init__(self, chain: "SimulatedChain", address: HexAddress, sender: HexAddress, value: int = 0):
        self.chain = chain

        #: Whose storage we run against
        self.address = address

        self.sender = sender
        self.value = value

    @property
    def storage(self) -> dict:
        return self.chain.storage.setdefault(self.address, {})

    def call(self, target: HexAddress | str, data: bytes) -> bytes:
        """Message call from the current contract."""
        return self.chain.execute(self.address, target, data)

    def delegate(self, implementation: HexAddress | str, data: bytes) -> bytes:
        """Run ``implementation`` code against the current storage and sender."""
        logic = self.chain.logic.get(to_checksum_address(implementation))
        if logic is None:
            return b""
        return logic.handle(CallContext(self.chain, self.address, self.sender, self.value), data)


class SimulatedContract:
    """Python model of a contract.

    ABI functions are dispatched to snake cased methods taking the call context first.
    """

    #: Contract name in the artifacts
    name: str = None

    abi: list = []

    def __init__(self):
        self.selectors = {}
        for entry in self.abi:
            if entry.get("type") == "function":
                self.selectors[get_function_selector(entry)] = entry

    @classmethod
    def factory(cls) -> ContractFactory:
        return ContractFactory(cls.name, cls.abi, contract_marker(cls.name))

    def construct(self, ctx: CallContext, encoded_args: bytes):
        ctor = next((e for e in self.abi if e.get("type") == "constructor"), None)
        args = ()
        if ctor is not None:
            try:
                args = eth_abi.decode(get_abi_input_types(ctor), encoded_args)
            except DecodingError as e:
                raise Revert(f"Bad constructor arguments for {self.name}") from e
        self.constructor(ctx, *args)

    def constructor(self, ctx: CallContext, *args):
        pass

    def handle(self, ctx: CallContext, data: bytes) -> bytes:
        data = bytes(data)
        fn_abi = self.selectors.get(data[0:4])
        if fn_abi is None:
            return self.fallback(ctx, data)
        return self.dispatch(ctx, fn_abi, data)

    def dispatch(self, ctx: CallContext, fn_abi: dict, data: bytes) -> bytes:
        try:
            args = eth_abi.decode(get_abi_input_types(fn_abi), data[4:])
        except DecodingError as e:
            raise Revert(f"Bad calldata for {fn_abi['name']}") from e

        result = getattr(self, _snake_case(fn_abi["name"]))(ctx, *args)

        output_types = get_abi_output_types(fn_abi)
        if not output_types:
            return b""
        if len(output_types) == 1:
            result = (result,)
        try:
            return eth_abi.encode(output_types, list(result))
        except EncodingError as e:
            raise Revert(f"Bad return value from {fn_abi['name']}: {result}") from e

    def fallback(self, ctx: CallContext, data: bytes) -> bytes:
        raise Revert(f"{self.name}: function not found")


class Ownable:
    """Owner bookkeeping shared by owned contracts."""

    def only_owner(self, ctx: CallContext):
        if ctx.storage.get("owner") != ctx.sender:
            raise Revert("Ownable: caller is not the owner")

    def owner(self, ctx: CallContext):
        return ctx.storage.get("owner", ZERO_ADDRESS)

    def transfer_ownership(self, ctx: CallContext, new_owner: str):
        self.only_owner(ctx)
        if to_checksum_address(new_owner) == ZERO_ADDRESS:
            raise Revert("Ownable: new owner is the zero address")
        ctx.storage["owner"] = to_checksum_address(new_owner)


def _encode_call(abi: list, name: str, *args) -> bytes:
    return bytes(ContractFactory("call", abi, b"").encode_function_call(name, args))


class Create2DeployerContract(SimulatedContract):
    name = "Create2Deployer"
    abi = CREATE2_DEPLOYER_ABI

    def _create(self, ctx: CallContext, init_code: bytes, salt: bytes, calls: list) -> HexAddress:
        address = create2_address(ctx.address, salt, keccak(init_code))
        ctx.chain.create(address, init_code, ctx.address)
        for target, data in calls:
            ctx.call(target, data)
        return address

    def deploy(self, ctx, bytecode, salt, calls):
        return self._create(ctx, bytecode, salt, calls)

    def deploy_template(self, ctx, template_id, salt, calls):
        templates = ctx.storage.setdefault("templates", {})
        if template_id not in templates:
            raise Revert("Create2Deployer: template does not exist")
        return self._create(ctx, templates[template_id], salt, calls)

    def create_template(self, ctx, bytecode):
        templates = ctx.storage.setdefault("templates", {})
        template_id = keccak(bytecode)
        if template_id in templates:
            raise Revert("Create2Deployer: template exists")
        templates[template_id] = bytecode
        return template_id

    def template_exists(self, ctx, template_id):
        return template_id in ctx.storage.get("templates", {})

    def template_address(self, ctx, template_id, salt):
        return create2_address(ctx.address, salt, template_id)

    def clone(self, ctx, target, salt):
        return self._create(ctx, clone_init_code(target), salt, [])

    def clone_address(self, ctx, target, salt):
        return create2_address(ctx.address, salt, keccak(clone_init_code(target)))


class CloneContract(SimulatedContract):
    """EIP-1167 minimal proxy."""

    name = "Clone"

    def __init__(self, target: HexAddress):
        super().__init__()
        self.target = target

    def handle(self, ctx, data):
        return ctx.delegate(self.target, data)


class PlaceholderContract(SimulatedContract):
    """Forwards ``abi.encode(target, data)`` calls to ``target``."""

    name = PLACEHOLDER
    abi = PLACEHOLDER_ABI

    def fallback(self, ctx, data):
        try:
            target, payload = eth_abi.decode(["address", "bytes"], data)
        except DecodingError as e:
            raise Revert("Placeholder: bad forward call") from e
        return ctx.call(target, payload)


class ProxyAdminContract(Ownable, SimulatedContract):
    name = PROXY_ADMIN
    abi = PROXY_ADMIN_ABI

    def constructor(self, ctx):
        ctx.storage["owner"] = ctx.sender

    def get_proxy_implementation(self, ctx, proxy):
        data = ctx.call(proxy, _encode_call(TRANSPARENT_UPGRADEABLE_PROXY_ABI, "implementation"))
        return eth_abi.decode(["address"], data)[0]

    def get_proxy_admin(self, ctx, proxy):
        data = ctx.call(proxy, _encode_call(TRANSPARENT_UPGRADEABLE_PROXY_ABI, "admin"))
        return eth_abi.decode(["address"], data)[0]

    def change_proxy_admin(self, ctx, proxy, new_admin):
        self.only_owner(ctx)
        ctx.call(proxy, _encode_call(TRANSPARENT_UPGRADEABLE_PROXY_ABI, "changeAdmin", new_admin))

    def upgrade(self, ctx, proxy, implementation):
        self.only_owner(ctx)
        ctx.call(proxy, _encode_call(TRANSPARENT_UPGRADEABLE_PROXY_ABI, "upgradeTo", implementation))

    def upgrade_and_call(self, ctx, proxy, implementation, data):
        self.only_owner(ctx)
        ctx.call(proxy, _encode_call(TRANSPARENT_UPGRADEABLE_PROXY_ABI, "upgradeToAndCall", implementation, data))


class TransparentUpgradeableProxyContract(SimulatedContract):
    name = TRANSPARENT_UPGRADEABLE_PROXY
    abi = TRANSPARENT_UPGRADEABLE_PROXY_ABI

    def _set_implementation(self, ctx, implementation):
        if not ctx.chain.has_code(implementation):
            raise Revert("ERC1967: new implementation is not a contract")
        ctx.storage[ERC1967_IMPLEMENTATION_SLOT] = _address_word(implementation)

    def constructor(self, ctx, logic, admin, data):
        self._set_implementation(ctx, logic)
        ctx.storage[ERC1967_ADMIN_SLOT] = _address_word(admin)
        if data:
            ctx.delegate(logic, data)

    def handle(self, ctx, data):
        admin = _word_address(ctx.storage.get(ERC1967_ADMIN_SLOT))
        if ctx.sender == admin:
            fn_abi = self.selectors.get(bytes(data)[0:4])
            if fn_abi is None:
                raise Revert("TransparentUpgradeableProxy: admin cannot fallback to proxy target")
            return self.dispatch(ctx, fn_abi, bytes(data))
        implementation = _word_address(ctx.storage.get(ERC1967_IMPLEMENTATION_SLOT))
        return ctx.delegate(implementation, data)

    def admin(self, ctx):
        return _word_address(ctx.storage.get(ERC1967_ADMIN_SLOT))

    def implementation(self, ctx):
        return _word_address(ctx.storage.get(ERC1967_IMPLEMENTATION_SLOT))

    def change_admin(self, ctx, new_admin):
        ctx.storage[ERC1967_ADMIN_SLOT] = _address_word(new_admin)

    def upgrade_to(self, ctx, implementation):
        self._set_implementation(ctx, implementation)

    def upgrade_to_and_call(self, ctx, implementation, data):
        self._set_implementation(ctx, implementation)
        ctx.delegate(implementation, data)


class UpgradeableBeaconContract(Ownable, SimulatedContract):
    name = UPGRADEABLE_BEACON
    abi = UPGRADEABLE_BEACON_ABI

    def _set_implementation(self, ctx, implementation):
        if not ctx.chain.has_code(implementation):
            raise Revert("UpgradeableBeacon: implementation is not a contract")
        ctx.storage["implementation"] = to_checksum_address(implementation)

    def constructor(self, ctx, implementation):
        self._set_implementation(ctx, implementation)
        ctx.storage["owner"] = ctx.sender

    def implementation(self, ctx):
        return ctx.storage["implementation"]

    def upgrade_to(self, ctx, implementation):
        self.only_owner(ctx)
        self._set_implementation(ctx, implementation)


class BeaconProxyContract(SimulatedContract):
    name = BEACON_PROXY
    abi = BEACON_PROXY_ABI

    def _implementation(self, ctx) -> HexAddress:
        beacon = _word_address(ctx.storage.get(ERC1967_BEACON_SLOT))
        data = ctx.call(beacon, _encode_call(UPGRADEABLE_BEACON_ABI, "implementation"))
        return eth_abi.decode(["address"], data)[0]

    def constructor(self, ctx, beacon, data):
        ctx.storage[ERC1967_BEACON_SLOT] = _address_word(beacon)
        if data:
            ctx.delegate(self._implementation(ctx), data)

    def handle(self, ctx, data):
        return ctx.delegate(self._implementation(ctx), data)


class DeploymentRegistryContract(SimulatedContract):
    name = DEPLOYMENT_REGISTRY
    abi = DEPLOYMENT_REGISTRY_ABI

    EMPTY = (ZERO_ADDRESS, False, ZERO_HASH, 0, 0, ZERO_HASH, ZERO_HASH, ZERO_HASH)

    def _record(self, ctx, target) -> list:
        record = ctx.storage.setdefault("records", {}).get(to_checksum_address(target))
        if record is None or record[3] == 0:
            raise Revert("DeploymentRegistry: not registered")
        return record

    def register(self, ctx, target, info):
        records = ctx.storage.setdefault("records", {})
        existing = records.get(to_checksum_address(target))
        if existing is not None and existing[3] > 0:
            raise Revert("DeploymentRegistry: already registered")
        owner, initialized, tx_hash, block, timestamp, construct, initialize, configure = info
        records[to_checksum_address(target)] = [to_checksum_address(owner), initialized, tx_hash, block, timestamp, construct, initialize, configure]

    def initialized(self, ctx, target, settings_id):
        record = self._record(ctx, target)
        record[1] = True
        record[6] = settings_id

    def configured(self, ctx, target, settings_id):
        record = self._record(ctx, target)
        record[7] = settings_id

    def deployment_info(self, ctx, target):
        record = ctx.storage.get("records", {}).get(to_checksum_address(target))
        if record is None:
            return self.EMPTY
        return tuple(record)

    def multicall(self, ctx, data):
        return [self.handle(ctx, d) for d in data]


_TOKEN_ABI = [
    _constructor([_param("address", "admin")]),
    _function("initialize", [_param("address", "admin")]),
    _function("isInitialized", outputs=[_param("bool")], state_mutability="view"),
    _function("setValue", [_param("uint256", "value")]),
    _function("value", outputs=[_param("uint256")], state_mutability="view"),
    _function("version", outputs=[_param("uint256")], state_mutability="pure"),
    _function("migrate", [_param("uint256", "value")]),
    _function("multicall", [_param("bytes[]", "data")], [_param("bytes[]", "results")]),
] + ACCESS_CONTROL_ABI


class AccessControlMixin:
    """Role bookkeeping like OpenZeppelin AccessControl, with a single admin role."""

    def _grant(self, ctx, role, account):
        ctx.storage.setdefault("roles", set()).add((bytes(role), to_checksum_address(account)))

    def has_role(self, ctx, role, account):
        return (bytes(role), to_checksum_address(account)) in ctx.storage.get("roles", set())

    def grant_role(self, ctx, role, account):
        if not self.has_role(ctx, DEFAULT_ADMIN_ROLE.role_id, ctx.sender):
            raise Revert("AccessControl: missing role")
        self._grant(ctx, role, account)

    def get_role_admin(self, ctx, role):
        return ZERO_HASH


class TokenContract(AccessControlMixin, SimulatedContract):
    """Upgradeable application contract with roles and multicall."""

    name = "Token"
    abi = _TOKEN_ABI
    VERSION = 1

    def constructor(self, ctx, admin):
        if to_checksum_address(admin) != ZERO_ADDRESS:
            self._grant(ctx, DEFAULT_ADMIN_ROLE.role_id, admin)

    def initialize(self, ctx, admin):
        if ctx.storage.get("initialized"):
            raise Revert("Initializable: contract is already initialized")
        ctx.storage["initialized"] = True
        self._grant(ctx, DEFAULT_ADMIN_ROLE.role_id, admin)

    def is_initialized(self, ctx):
        return bool(ctx.storage.get("initialized"))

    def set_value(self, ctx, value):
        if value == 13:
            raise Revert("Token: unlucky value")
        ctx.storage["value"] = value

    def value(self, ctx):
        return ctx.storage.get("value", 0)

    def version(self, ctx):
        return self.VERSION

    def migrate(self, ctx, value):
        ctx.storage["value"] = value
        ctx.storage["migrated"] = True

    def multicall(self, ctx, data):
        return [self.handle(ctx, d) for d in data]


class TokenV2Contract(TokenContract):
    name = "TokenV2"
    VERSION = 2


class CounterContract(AccessControlMixin, SimulatedContract):
    """Contract with roles but without multicall."""

    name = "Counter"
    abi = [
        _constructor([_param("address", "admin")]),
        _function("increment"),
        _function("count", outputs=[_param("uint256")], state_mutability="view"),
    ] + ACCESS_CONTROL_ABI

    def constructor(self, ctx, admin):
        self._grant(ctx, DEFAULT_ADMIN_ROLE.role_id, admin)

    def increment(self, ctx):
        ctx.storage["count"] = ctx.storage.get("count", 0) + 1

    def count(self, ctx):
        return ctx.storage.get("count", 0)


class BrokenContract(SimulatedContract):
    """Constructor always reverts."""

    name = "Broken"
    abi = []

    def constructor(self, ctx):
        raise Revert("Broken: cannot deploy")


class MultisigContract(SimulatedContract):
    """Stand-in for a multisig wallet, only has code."""

    name = "Multisig"
    abi = [_constructor([_param("uint256", "nonce")])]


#: Every simulated contract type
SIMULATED_CONTRACTS = (
    PlaceholderContract,
    ProxyAdminContract,
    TransparentUpgradeableProxyContract,
    UpgradeableBeaconContract,
    BeaconProxyContract,
    DeploymentRegistryContract,
    TokenContract,
    TokenV2Contract,
    CounterContract,
    BrokenContract,
    MultisigContract,
)


class SimulatedChain(ChainRPC):
    """Automining in-memory chain running :py:class:`SimulatedContract` models."""

    def __init__(self, contracts=SIMULATED_CONTRACTS, chain_id: int = 31337, account_count: int = 3, bootstrap: bool = True):
        self._chain_id = chain_id
        self.contract_types = {contract_marker(c.name): c for c in contracts}
        self.artifacts = StaticArtifacts([c.factory() for c in contracts])

        self.code: dict[HexAddress, bytes] = {}
        self.logic: dict[HexAddress, SimulatedContract] = {}
        self.storage: dict[HexAddress, dict] = {}
        self.nonces: dict[HexAddress, int] = {}

        self.accounts = [to_checksum_address(keccak(text=f"simulated account {i}")[12:]) for i in range(account_count)]
        self.blocks = [{"number": 0, "timestamp": GENESIS_TIMESTAMP, "transactions": []}]

        #: Mined transactions in order
        self.transactions: list[dict] = []
        self.receipts: dict[bytes, dict] = {}

        if bootstrap:
            self.install_create2_deployer()

    def __repr__(self):
        return f"<SimulatedChain {self._chain_id}, block {self.block_number}>"

    @property
    def block_number(self) -> int:
        return len(self.blocks) - 1

    def install_create2_deployer(self, address: HexAddress | str = CREATE2_DEPLOYER_ADDRESS):
        """Put the shared deployer at its fixed address, like a node cheat code would."""
        address = to_checksum_address(address)
        self.code[address] = contract_marker(Create2DeployerContract.name)
        self.logic[address] = Create2DeployerContract()
        self.storage[address] = {}

    def create(self, address: HexAddress, init_code: bytes, sender: HexAddress):
        """Run init code at ``address``."""
        address = to_checksum_address(address)
        if address in self.code:
            raise Revert(f"Create2: contract already deployed at {address}")

        init_code = bytes(init_code)
        if init_code.startswith(CLONE_PREFIX) and init_code.endswith(CLONE_SUFFIX):
            target = to_checksum_address(init_code[len(CLONE_PREFIX) : len(CLONE_PREFIX) + 20])
            self.code[address] = init_code
            self.logic[address] = CloneContract(target)
            self.storage[address] = {}
            return

        marker = init_code[0:20]
        contract_type = self.contract_types.get(marker)
        if contract_type is None:
            raise Revert("Create2: unknown init code")

        logic = contract_type()
        self.code[address] = marker
        self.logic[address] = logic
        self.storage[address] = {}
        logic.construct(CallContext(self, address, sender), init_code[20:])

    def execute(self, sender: HexAddress | str, to: HexAddress | str, data: bytes, value: int = 0) -> bytes:
        to = to_checksum_address(to)
        logic = self.logic.get(to)
        if logic is None:
            return b""
        return logic.handle(CallContext(self, to, to_checksum_address(sender), value), bytes(data))

    def _snapshot(self):
        return dict(self.code), dict(self.logic), copy.deepcopy(self.storage)

    def _restore(self, snapshot):
        self.code, self.logic, self.storage = snapshot

    def _mine(self, sender: HexAddress, tx: dict, tx_hash: bytes) -> HexBytes:
        sender = to_checksum_address(sender)
        nonce = self.nonces.get(sender, 0)
        self.nonces[sender] = nonce + 1

        snapshot = self._snapshot()
        status = 1
        revert_reason = None
        try:
            self.execute(sender, tx["to"], HexBytes(tx.get("data", b"")), tx.get("value", 0))
        except Revert as e:
            self._restore(snapshot)
            status = 0
            revert_reason = str(e)

        block_number = len(self.blocks)
        self.blocks.append(
            {
                "number": block_number,
                "timestamp": self.blocks[-1]["timestamp"] + BLOCK_TIME,
                "transactions": [tx_hash],
            }
        )

        record = {
            "hash": HexBytes(tx_hash),
            "from": sender,
            "to": to_checksum_address(tx["to"]),
            "input": HexBytes(tx.get("data", b"")),
            "value": tx.get("value", 0),
            "nonce": nonce,
            "gasPrice": tx.get("gasPrice", self.gas_price()),
            "blockNumber": block_number,
        }
        self.transactions.append(record)
        self.receipts[bytes(tx_hash)] = {
            "transactionHash": HexBytes(tx_hash),
            "status": status,
            "blockNumber": block_number,
            "from": sender,
            "to": record["to"],
            "gasUsed": 21_000,
            "revertReason": revert_reason,
        }
        return HexBytes(tx_hash)

    def chain_id(self) -> int:
        return self._chain_id

    def get_code(self, address: HexAddress | str) -> bytes:
        return self.code.get(to_checksum_address(address), b"")

    def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        value = self.storage.get(to_checksum_address(address), {}).get(slot, b"")
        return bytes(value).rjust(32, b"\x00")

    def call(self, tx: dict, block_identifier="latest") -> bytes:
        snapshot = self._snapshot()
        try:
            return self.execute(tx.get("from", ZERO_ADDRESS), tx["to"], HexBytes(tx.get("data", b"")), tx.get("value", 0))
        except Revert as e:
            raise CallReverted(str(e)) from e
        finally:
            self._restore(snapshot)

    def estimate_gas(self, tx: dict) -> int:
        self.call(tx)
        return 1_000_000

    def gas_price(self) -> int:
        return 1_000_000_000

    def get_transaction_count(self, address: HexAddress | str) -> int:
        return self.nonces.get(to_checksum_address(address), 0)

    def send_transaction(self, tx: dict) -> HexBytes:
        sender = to_checksum_address(tx["from"])
        if sender not in self.accounts:
            raise ValueError(f"Account {sender} is not unlocked")
        return self.send_as(sender, tx)

    def send_as(self, sender: HexAddress | str, tx: dict) -> HexBytes:
        """Send a transaction from any address, e.g. a multisig executing a proposal."""
        sender = to_checksum_address(sender)
        nonce = self.nonces.get(sender, 0)
        tx_hash = keccak(to_canonical_address(sender) + nonce.to_bytes(8, "big") + bytes(HexBytes(tx.get("data", b""))))
        return self._mine(sender, tx, tx_hash)

    def send_raw_transaction(self, raw: bytes) -> HexBytes:
        raw = bytes(raw)
        assert raw[0] >= 0xC0, "Only legacy transactions supported"
        sender = to_checksum_address(Account.recover_transaction(raw))
        nonce, gas_price, gas, to, value, data, v, r, s = rlp.decode(raw)
        nonce = int.from_bytes(nonce, "big")
        if nonce != self.nonces.get(sender, 0):
            raise ValueError(f"Nonce mismatch for {sender}: got {nonce}, expected {self.nonces.get(sender, 0)}")
        tx = {"to": to_checksum_address(to), "data": data, "value": int.from_bytes(value, "big"), "gasPrice": int.from_bytes(gas_price, "big")}
        return self._mine(sender, tx, keccak(raw))

    def wait_for_receipt(self, tx_hash: HexBytes, confirmations: int = 1) -> dict:
        return dict(self.receipts[bytes(tx_hash)])

    def get_transaction(self, tx_hash: HexBytes) -> dict:
        for tx in self.transactions:
            if tx["hash"] == HexBytes(tx_hash):
                return dict(tx)
        raise KeyError(f"Unknown transaction {HexBytes(tx_hash).hex()}")

    def get_block(self, block_identifier) -> dict:
        if block_identifier == "latest":
            return dict(self.blocks[-1])
        return dict(self.blocks[block_identifier])

    def get_signers(self) -> list[HexAddress]:
        return list(self.accounts)

    def deploy_plain(self, name: str, args: tuple = (), sender: HexAddress | None = None) -> HexAddress:
        """Put a contract on chain outside the shared deployer, e.g. a multisig."""
        factory = self.artifacts.get_factory(name)
        init_code = factory.init_code(args)
        address = to_checksum_address(keccak(init_code + len(self.code).to_bytes(8, "big"))[12:])
        self.create(address, init_code, sender or self.accounts[0])
        return address

    def calls_to(self, address: HexAddress | str, function_name: str = None, abi: list = None) -> list[dict]:
        """Mined transactions sent to ``address``, optionally only one function."""
        address = to_checksum_address(address)
        txs = [tx for tx in self.transactions if tx["to"] == address]
        if function_name is None:
            return txs
        selector = ContractFactory("filter", abi, b"").get_function_abi(function_name)
        return [tx for tx in txs if bytes(tx["input"][0:4]) == get_function_selector(selector)]

    def read(self, address: HexAddress | str) -> dict:
        """Raw storage of a contract for assertions."""
        return self.storage.get(to_checksum_address(address), {})
