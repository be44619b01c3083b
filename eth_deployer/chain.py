"""Chain RPC collaborator.

Everything in the deployer talks to the network through the minimal
:py:class:`ChainRPC` surface. :py:class:`Web3ChainRPC` implements it
on top of a :py:class:`web3.Web3` connection.
"""

import logging
import time
from abc import ABC, abstractmethod

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError

logger = logging.getLogger(__name__)


class CallReverted(Exception):
    """A static call or gas estimation reverted."""


class ChainRPC(ABC):
    """The network calls the deployer needs."""

    @abstractmethod
    def chain_id(self) -> int:
        pass

    @abstractmethod
    def get_code(self, address: HexAddress | str) -> bytes:
        pass

    @abstractmethod
    def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        pass

    @abstractmethod
    def call(self, tx: dict, block_identifier="latest") -> bytes:
        """Static call.

        :raise CallReverted:
            The call reverted
        """

    @abstractmethod
    def estimate_gas(self, tx: dict) -> int:
        """Estimate gas.

        :raise CallReverted:
            The transaction would revert
        """

    @abstractmethod
    def gas_price(self) -> int:
        pass

    @abstractmethod
    def get_transaction_count(self, address: HexAddress | str) -> int:
        pass

    @abstractmethod
    def send_transaction(self, tx: dict) -> HexBytes:
        """Send a transaction signed by a node-managed account."""

    @abstractmethod
    def send_raw_transaction(self, raw: bytes) -> HexBytes:
        pass

    @abstractmethod
    def wait_for_receipt(self, tx_hash: HexBytes, confirmations: int = 1) -> dict:
        """Block until the transaction has the given number of confirmations."""

    @abstractmethod
    def get_transaction(self, tx_hash: HexBytes) -> dict:
        pass

    @abstractmethod
    def get_block(self, block_identifier) -> dict:
        pass

    @abstractmethod
    def get_signers(self) -> list[HexAddress]:
        """Accounts the node can sign for."""

    def has_code(self, address: HexAddress | str) -> bool:
        return len(self.get_code(address)) > 0


class Web3ChainRPC(ChainRPC):
    """Chain RPC over web3.py.

    .. code-block:: python

        web3 = Web3(HTTPProvider(os.environ["JSON_RPC_URL"]))
        chain = Web3ChainRPC(web3)

    """

    def __init__(self, web3: Web3, receipt_timeout: float = 3600.0, poll_latency: float = 1.0):
        self.web3 = web3
        self.receipt_timeout = receipt_timeout
        self.poll_latency = poll_latency

    def __repr__(self):
        return f"<Web3ChainRPC {self.web3.provider}>"

    def chain_id(self) -> int:
        return self.web3.eth.chain_id

    def get_code(self, address: HexAddress | str) -> bytes:
        return bytes(self.web3.eth.get_code(Web3.to_checksum_address(address)))

    def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        return bytes(self.web3.eth.get_storage_at(Web3.to_checksum_address(address), slot))

    def call(self, tx: dict, block_identifier="latest") -> bytes:
        try:
            return bytes(self.web3.eth.call(tx, block_identifier))
        except ContractLogicError as e:
            raise CallReverted(str(e)) from e

    def estimate_gas(self, tx: dict) -> int:
        try:
            return self.web3.eth.estimate_gas(tx)
        except ContractLogicError as e:
            raise CallReverted(str(e)) from e

    def gas_price(self) -> int:
        return self.web3.eth.gas_price

    def get_transaction_count(self, address: HexAddress | str) -> int:
        return self.web3.eth.get_transaction_count(Web3.to_checksum_address(address))

    def send_transaction(self, tx: dict) -> HexBytes:
        return self.web3.eth.send_transaction(tx)

    def send_raw_transaction(self, raw: bytes) -> HexBytes:
        return self.web3.eth.send_raw_transaction(raw)

    def wait_for_receipt(self, tx_hash: HexBytes, confirmations: int = 1) -> dict:
        receipt = self.web3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=self.receipt_timeout,
            poll_latency=self.poll_latency,
        )
        while self.web3.eth.block_number - receipt["blockNumber"] + 1 < confirmations:
            logger.debug("Waiting %d confirmations for %s", confirmations, tx_hash.hex())
            time.sleep(self.poll_latency)
        return dict(receipt)

    def get_transaction(self, tx_hash: HexBytes) -> dict:
        return dict(self.web3.eth.get_transaction(tx_hash))

    def get_block(self, block_identifier) -> dict:
        return dict(self.web3.eth.get_block(block_identifier))

    def get_signers(self) -> list[HexAddress]:
        return list(self.web3.eth.accounts)
