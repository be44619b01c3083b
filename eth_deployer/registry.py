"""On-chain deployment registry client.

The registry contract keeps, per deployed address, who deployed it and when,
whether it has been initialized, and hashes of the settings that drove
each lifecycle phase. Comparing a settings hash with the stored one tells
whether a phase needs to run again.

Writes are collected during a run and flushed in one ``multicall``
transaction by :py:meth:`Registry.sync`.
"""

import json
import logging
from dataclasses import dataclass

from eth_typing import HexAddress
from eth_utils import keccak
from hexbytes import HexBytes
from web3 import Web3

from eth_deployer.abi import ZERO_ADDRESS, ZERO_HASH, ArtifactSource
from eth_deployer.chain import CallReverted
from eth_deployer.confirmation import SubmittedTransaction, wait_for_transaction
from eth_deployer.contract import ContractHandle
from eth_deployer.deployer import Deployer
from eth_deployer.interfaces import DEPLOYMENT_REGISTRY

logger = logging.getLogger(__name__)


def _serialise_value(value):
    if isinstance(value, (bytes, bytearray)):
        return HexBytes(value).hex()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Settings value {value!r} of type {type(value).__name__} cannot be hashed, use plain JSON types")


def settings_id(settings) -> bytes:
    """Content hash of a settings object.

    Keys are sorted, so the same content always gives the same hash.
    Bytes are hex encoded and sets sorted, other values must be plain JSON types.

    :raise TypeError:
        Settings contain a value without a stable serialisation
    """
    serialised = json.dumps(settings, sort_keys=True, separators=(",", ":"), default=_serialise_value)
    return keccak(text=serialised)


@dataclass(slots=True)
class DeploymentInfo:
    """Deployment record of one address."""

    owner: HexAddress = ZERO_ADDRESS
    initialized: bool = False
    hash: bytes = ZERO_HASH
    block: int = 0
    timestamp: int = 0
    construct_settings: bytes = ZERO_HASH
    initialize_settings: bytes = ZERO_HASH
    last_configure_settings: bytes = ZERO_HASH

    #: Not stored, the record exists or there is code at the address
    deployed: bool = False

    @property
    def registered(self) -> bool:
        """The registry has a record for the address."""
        return self.block > 0

    @classmethod
    def from_tuple(cls, data: tuple, has_code: bool = False) -> "DeploymentInfo":
        owner, initialized, tx_hash, block, timestamp, construct, initialize, configure = data
        return cls(
            owner=Web3.to_checksum_address(owner),
            initialized=initialized,
            hash=bytes(tx_hash),
            block=block,
            timestamp=timestamp,
            construct_settings=bytes(construct),
            initialize_settings=bytes(initialize),
            last_configure_settings=bytes(configure),
            deployed=block > 0 or has_code,
        )

    def as_tuple(self) -> tuple:
        return (
            Web3.to_checksum_address(self.owner),
            self.initialized,
            self.hash,
            self.block,
            self.timestamp,
            self.construct_settings,
            self.initialize_settings,
            self.last_configure_settings,
        )


class Registry:
    """Batched reads and writes of deployment records.

    .. code-block:: python

        registry = Registry.from_deployer(deployer, artifacts)
        info = registry.deployment_info({"token": token.address})["token"]
        if not info.initialized:
            ...
            registry.set_initialized(token.address, settings_id(settings))
        registry.sync()

    """

    def __init__(self, contract: ContractHandle, confirmations: int | None = None):
        self.contract = contract
        self.confirmations = confirmations

        #: Records registered in this run, folded with later phase updates
        self.pending_deployments: dict[HexAddress, DeploymentInfo] = {}

        #: (description, calldata) of other writes
        self.pending_calls: list[tuple[str, bytes]] = []

    def __repr__(self):
        return f"<Registry {self.contract.address}>"

    @property
    def address(self) -> HexAddress:
        return self.contract.address

    @property
    def chain(self):
        return self.contract.chain

    @classmethod
    def from_deployer(cls, deployer: Deployer, artifacts: ArtifactSource) -> "Registry":
        """Deploy the registry at its deterministic address, or attach to it."""
        handle = deployer.deploy(artifacts.get_factory(DEPLOYMENT_REGISTRY), salt=0)
        handle.wait_deployed()
        return cls(handle, deployer.confirmations)

    def deployment_info(self, addresses: dict[str, HexAddress]) -> dict[str, DeploymentInfo]:
        """Read records for many addresses with one static multicall.

        Addresses without a record fall back to checking for code.
        """
        if not addresses:
            return {}

        keys = list(addresses.keys())
        payload = [self.contract.encode("deploymentInfo", addresses[k]) for k in keys]
        results = self.contract.call("multicall", payload)

        infos = {}
        for key, data in zip(keys, results):
            raw = self.contract.factory.decode_function_output("deploymentInfo", data)
            block = raw[3]
            has_code = block == 0 and self.chain.has_code(addresses[key])
            infos[key] = DeploymentInfo.from_tuple(raw, has_code)
        return infos

    def set_deployment_info(self, address: HexAddress | str, tx: SubmittedTransaction, construct_settings: bytes = ZERO_HASH):
        """Queue the record of a deployment made in this run."""
        address = Web3.to_checksum_address(address)
        receipt = self.chain.wait_for_receipt(tx.tx_hash)
        block = self.chain.get_block(receipt["blockNumber"])
        info = DeploymentInfo(
            owner=tx.sender,
            initialized=False,
            hash=bytes(HexBytes(tx.tx_hash)),
            block=receipt["blockNumber"],
            timestamp=block["timestamp"],
            construct_settings=construct_settings,
            deployed=True,
        )
        self.pending_deployments[address] = info
        logger.debug("Queued registration of %s, tx %s", address, tx.tx_hash.hex())

    def register_existing(self, address: HexAddress | str, construct_settings: bytes = ZERO_HASH):
        """Queue a record for a contract that has code but was never registered.

        Happens when a run stopped between deploying and :py:meth:`sync`.
        The deployment transaction is not known, the record gets the current block.
        """
        address = Web3.to_checksum_address(address)
        block = self.chain.get_block("latest")
        self.pending_deployments[address] = DeploymentInfo(
            owner=self.contract.signer.address,
            initialized=False,
            hash=ZERO_HASH,
            block=max(block["number"], 1),
            timestamp=block["timestamp"],
            construct_settings=construct_settings,
            deployed=True,
        )
        logger.debug("Queued late registration of %s", address)

    def set_initialized(self, address: HexAddress | str, initialize_settings: bytes):
        address = Web3.to_checksum_address(address)
        pending = self.pending_deployments.get(address)
        if pending is not None:
            pending.initialized = True
            pending.initialize_settings = initialize_settings
        else:
            self.pending_calls.append((f"initialized({address})", bytes(self.contract.encode("initialized", address, initialize_settings))))

    def set_configured(self, address: HexAddress | str, configure_settings: bytes):
        address = Web3.to_checksum_address(address)
        pending = self.pending_deployments.get(address)
        if pending is not None:
            pending.last_configure_settings = configure_settings
        else:
            self.pending_calls.append((f"configured({address})", bytes(self.contract.encode("configured", address, configure_settings))))

    def has_pending(self) -> bool:
        return bool(self.pending_deployments or self.pending_calls)

    def sync(self) -> SubmittedTransaction | None:
        """Flush pending writes in one multicall transaction.

        Each write is first tested with a static call. Writes that would
        revert are dropped with a warning so they do not sink the batch.

        :return:
            The multicall transaction, ``None`` if there was nothing to write
        """
        calls = [(f"register({address})", bytes(self.contract.encode("register", address, info.as_tuple()))) for address, info in self.pending_deployments.items()]
        calls += self.pending_calls

        valid = []
        for description, data in calls:
            try:
                self.chain.call({"from": self.contract.signer.address, "to": self.address, "data": data})
            except CallReverted as e:
                logger.warning("Registry call %s would revert, skipping: %s", description, e)
                continue
            valid.append(data)

        self.pending_deployments = {}
        self.pending_calls = []

        if not valid:
            logger.debug("Nothing to write to the registry")
            return None

        logger.info("Writing %d records to registry %s", len(valid), self.address)
        tx = self.contract.transact("multicall", valid)
        wait_for_transaction(self.chain, tx, self.confirmations)
        return tx
