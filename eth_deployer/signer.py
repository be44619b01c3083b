"""Transaction signers.

- :py:class:`NodeAccountSigner` lets the node sign with an unlocked account

- :py:class:`HotWalletSigner` signs locally with a private key

- :py:class:`MultisigSigner` does not sign at all, but proposes the transaction
  to a multisig for out-of-band signing

"""

import logging
from abc import ABC, abstractmethod

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from safe_eth.eth import EthereumClient, EthereumNetwork
from safe_eth.safe import Safe
from safe_eth.safe.api.transaction_service_api.transaction_service_api import TransactionServiceApi
from web3 import Web3

from eth_deployer.chain import ChainRPC

logger = logging.getLogger(__name__)


class SafeTxProposalError(Exception):
    """Error proposing Safe transaction"""


class TransactionSigner(ABC):
    """Submits transactions on behalf of one address."""

    #: Proposes instead of sending
    is_multisig = False

    @property
    @abstractmethod
    def address(self) -> HexAddress:
        pass

    @abstractmethod
    def send_transaction(self, chain: ChainRPC, tx: dict) -> HexBytes | None:
        """Submit a transaction.

        :param tx:
            Transaction dict with at least ``to`` and ``data``

        :return:
            Transaction hash, or ``None`` when the transaction was only proposed
        """

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.address}>"


class NodeAccountSigner(TransactionSigner):
    """Sign with an account unlocked on the node."""

    def __init__(self, address: HexAddress | str):
        self._address = Web3.to_checksum_address(address)

    @property
    def address(self) -> HexAddress:
        return self._address

    def send_transaction(self, chain: ChainRPC, tx: dict) -> HexBytes:
        tx = {**tx, "from": self.address}
        return chain.send_transaction(tx)


class HotWalletSigner(TransactionSigner):
    """Sign transactions locally with a private key.

    - Nonce is tracked locally after the first sync, so the engine
      must have exclusive use of the account for the run

    - Gas price is the node suggestion multiplied by ``gas_price_multiplier``

    """

    def __init__(self, account: LocalAccount, gas_price_multiplier: float = 1.0):
        assert isinstance(account, LocalAccount), f"Got {type(account)}"
        self.account = account
        self.gas_price_multiplier = gas_price_multiplier
        self.current_nonce = None

    @property
    def address(self) -> HexAddress:
        return self.account.address

    @property
    def private_key(self) -> HexBytes:
        return HexBytes(self.account.key)

    def sync_nonce(self, chain: ChainRPC):
        """Read the current nonce from the chain."""
        self.current_nonce = chain.get_transaction_count(self.address)
        logger.info("Synced nonce for %s to %d", self.address, self.current_nonce)

    def allocate_nonce(self, chain: ChainRPC) -> int:
        """Get the next free available nonce to be used with a transaction."""
        if self.current_nonce is None:
            self.sync_nonce(chain)
        nonce = self.current_nonce
        self.current_nonce += 1
        return nonce

    def send_transaction(self, chain: ChainRPC, tx: dict) -> HexBytes:
        tx = {**tx, "from": self.address}
        tx.setdefault("value", 0)
        tx.setdefault("chainId", chain.chain_id())
        if "gas" not in tx:
            tx["gas"] = chain.estimate_gas(tx)
        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            tx["gasPrice"] = int(chain.gas_price() * self.gas_price_multiplier)
        tx["nonce"] = self.allocate_nonce(chain)
        del tx["from"]
        signed = self.account.sign_transaction(tx)
        return chain.send_raw_transaction(signed.raw_transaction)

    @staticmethod
    def from_private_key(key: str, gas_price_multiplier: float = 1.0) -> "HotWalletSigner":
        """Create a hot wallet from a private key that is passed in as a hex string.

        :param key: 0x prefixed hex string
        """
        assert key.startswith("0x"), "Private key must be 0x prefixed"
        return HotWalletSigner(Account.from_key(key), gas_price_multiplier)


class MultisigProposer(ABC):
    """Hands transactions to a multisig for out-of-band signing."""

    @abstractmethod
    def propose(self, multisig_address: HexAddress, to: HexAddress, data: bytes, value: int = 0) -> HexBytes:
        """Propose a transaction.

        :return:
            Proposal identifier, e.g. the Safe transaction hash
        """


class MultisigSigner(TransactionSigner):
    """Owner is a multisig contract.

    Transactions are proposed, never sent, and nobody waits for them.
    """

    is_multisig = True

    def __init__(self, address: HexAddress | str, proposer: MultisigProposer):
        self._address = Web3.to_checksum_address(address)
        self.proposer = proposer

    @property
    def address(self) -> HexAddress:
        return self._address

    def send_transaction(self, chain: ChainRPC, tx: dict) -> None:
        proposal = self.proposer.propose(self.address, tx["to"], bytes(HexBytes(tx.get("data", b""))), tx.get("value", 0))
        logger.info("Sent multisig transaction to be signed, multisig %s, target %s, proposal %s", self.address, tx["to"], proposal)
        return None


def create_safe_ethereum_client(web3: Web3) -> EthereumClient:
    """Safe library wants to use its own client.

    - Translate Web3 endpoints to EthereumClient
    """
    return EthereumClient(web3.provider.endpoint_uri)


class SafeTransactionProposer(MultisigProposer):
    """Propose transactions to a Safe through the Safe transaction service.

    The proposer must be an owner or a delegate of the Safe.

    .. code-block:: python

        proposer = SafeTransactionProposer(web3, Account.from_key(os.environ["SAFE_PROPOSER_KEY"]))
        env = Environment(chain, artifacts, configs, multisig_proposer=proposer)

    """

    def __init__(self, web3: Web3, proposer: LocalAccount, transaction_service_url: str | None = None):
        self.web3 = web3
        self.proposer = proposer
        self.transaction_service_url = transaction_service_url

    def propose(self, multisig_address: HexAddress, to: HexAddress, data: bytes, value: int = 0) -> HexBytes:
        ethereum_client = create_safe_ethereum_client(self.web3)
        safe = Safe(multisig_address, ethereum_client)

        safe_tx = safe.build_multisig_tx(to, value, data)
        safe_tx.sign(self.proposer._private_key.hex())

        network = EthereumNetwork(self.web3.eth.chain_id)
        tx_service = TransactionServiceApi(
            network=network,
            ethereum_client=ethereum_client,
            base_url=self.transaction_service_url,
        )

        logger.info("Proposing safeTxHash %s to %s", safe_tx.safe_tx_hash.hex(), tx_service.base_url)

        posted = tx_service.post_transaction(safe_tx)
        if not posted:
            raise SafeTxProposalError(f"Could not post Safe transaction to tx service: {safe_tx} to {tx_service.base_url}")

        return safe_tx.safe_tx_hash
