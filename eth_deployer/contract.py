"""Handles to contracts at known addresses."""

import logging
from typing import Any, Sequence

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_deployer.abi import ContractFactory
from eth_deployer.chain import ChainRPC
from eth_deployer.confirmation import SubmittedTransaction, wait_for_transaction
from eth_deployer.signer import TransactionSigner

logger = logging.getLogger(__name__)


class ContractHandle:
    """A contract at a deterministic address.

    - ``deploy_transaction`` is set when this run submitted the deployment,
      ``None`` when the contract was already on chain

    - :py:meth:`wait_deployed` resolves once the deployment is confirmed,
      immediately for already deployed contracts

    """

    def __init__(
        self,
        chain: ChainRPC,
        factory: ContractFactory,
        address: HexAddress | str,
        signer: TransactionSigner | None = None,
        deploy_transaction: SubmittedTransaction | None = None,
        confirmations: int | None = None,
    ):
        self.chain = chain
        self.factory = factory
        self.address = Web3.to_checksum_address(address)
        self.signer = signer
        self.deploy_transaction = deploy_transaction
        self.confirmations = confirmations
        self._deploy_receipt = None

    def __repr__(self):
        return f"<Contract {self.factory.name} at {self.address}>"

    @property
    def name(self) -> str:
        return self.factory.name

    @property
    def newly_deployed(self) -> bool:
        """Did this run submit the deployment transaction."""
        return self.deploy_transaction is not None

    def wait_deployed(self) -> dict | None:
        """Wait until the deployment transaction is confirmed.

        :return:
            Deployment receipt, or ``None`` for already deployed contracts
        """
        if self.deploy_transaction is None:
            return None
        if self._deploy_receipt is None:
            self._deploy_receipt = wait_for_transaction(self.chain, self.deploy_transaction, self.confirmations)
        return self._deploy_receipt

    def attach(self, address: HexAddress | str) -> "ContractHandle":
        """The same ABI at another address."""
        return ContractHandle(self.chain, self.factory, address, self.signer, confirmations=self.confirmations)

    def connect(self, signer: TransactionSigner) -> "ContractHandle":
        """The same contract, transacting with another signer."""
        handle = ContractHandle(self.chain, self.factory, self.address, signer, self.deploy_transaction, self.confirmations)
        handle._deploy_receipt = self._deploy_receipt
        return handle

    def with_factory(self, factory: ContractFactory) -> "ContractHandle":
        """Use another ABI at this address, e.g. implementation ABI on a proxy."""
        handle = ContractHandle(self.chain, factory, self.address, self.signer, self.deploy_transaction, self.confirmations)
        handle._deploy_receipt = self._deploy_receipt
        return handle

    def has_function(self, name: str) -> bool:
        return self.factory.has_function(name)

    def encode(self, function_name: str, *args) -> HexBytes:
        return self.factory.encode_function_call(function_name, args)

    def call(self, function_name: str, *args, sender: HexAddress | str | None = None, block_identifier="latest") -> Any:
        """Static call a function and decode the result.

        :raise eth_deployer.chain.CallReverted:
            The call reverted
        """
        tx = {"to": self.address, "data": self.encode(function_name, *args)}
        if sender is None and self.signer is not None:
            sender = self.signer.address
        if sender is not None:
            tx["from"] = Web3.to_checksum_address(sender)
        data = self.chain.call(tx, block_identifier)
        return self.factory.decode_function_output(function_name, data, args)

    def build_transaction(self, function_name: str, *args, value: int = 0) -> dict:
        tx = {"to": self.address, "data": self.encode(function_name, *args)}
        if value:
            tx["value"] = value
        return tx

    def transact(
        self,
        function_name: str,
        *args,
        signer: TransactionSigner | None = None,
        value: int = 0,
        overrides: dict | None = None,
    ) -> SubmittedTransaction:
        """Submit a state changing call.

        :return:
            Submitted transaction. Use :py:func:`eth_deployer.confirmation.wait_for_transaction` to wait for it.
        """
        signer = signer or self.signer
        assert signer is not None, f"No signer for {function_name} on {self}"
        tx = self.build_transaction(function_name, *args, value=value)
        if overrides:
            tx.update(overrides)
        description = f"{self.factory.name}.{function_name}() at {self.address}"
        logger.debug("Submitting %s with %s", description, signer)
        tx_hash = signer.send_transaction(self.chain, tx)
        return SubmittedTransaction(
            sender=signer.address,
            tx_hash=tx_hash,
            proposed=signer.is_multisig,
            description=description,
        )

    def transact_and_wait(self, function_name: str, *args, signer: TransactionSigner | None = None, **kwargs) -> dict | None:
        """Submit and wait for the configured number of confirmations."""
        tx = self.transact(function_name, *args, signer=signer, **kwargs)
        return wait_for_transaction(self.chain, tx, self.confirmations)

    def get_code(self) -> bytes:
        return self.chain.get_code(self.address)
