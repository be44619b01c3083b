"""Wait for submitted transactions."""

import logging
from dataclasses import dataclass

from eth_typing import HexAddress
from hexbytes import HexBytes

from eth_deployer.chain import ChainRPC

logger = logging.getLogger(__name__)


class TransactionFailed(Exception):
    """Transaction was mined, but reverted."""

    def __init__(self, tx_hash, msg):
        super().__init__(msg)
        self.tx_hash = tx_hash


@dataclass(slots=True)
class SubmittedTransaction:
    """A transaction handed over to a signer.

    Multisig signers only propose transactions, so there is no hash to wait for.
    """

    #: Who was asked to sign
    sender: HexAddress

    #: Transaction hash, ``None`` for multisig proposals
    tx_hash: HexBytes | None

    #: Proposed to a multisig for out-of-band signing
    proposed: bool = False

    #: Human readable description for logs and errors
    description: str = ""

    def is_pending_signatures(self) -> bool:
        return self.proposed


def wait_for_transaction(
    chain: ChainRPC,
    tx: SubmittedTransaction,
    confirmations: int | None = None,
) -> dict | None:
    """Wait for a submitted transaction to complete.

    :param confirmations:
        How many blocks to wait. ``None`` means one block.
        ``0`` means fire-and-forget, do not wait at all.

    :raise TransactionFailed:
        The transaction reverted

    :return:
        The receipt, or ``None`` if we did not wait
    """

    if tx.proposed:
        logger.info("Transaction %s proposed to multisig %s, not waiting", tx.description, tx.sender)
        return None

    if confirmations is None:
        confirmations = 1

    if confirmations == 0:
        logger.debug("Not waiting for %s", tx.tx_hash.hex())
        return None

    receipt = chain.wait_for_receipt(tx.tx_hash, confirmations)
    if receipt["status"] != 1:
        raise TransactionFailed(tx.tx_hash, f"Transaction reverted: {tx.description} {tx.tx_hash.hex()}")

    logger.debug("Transaction %s confirmed in block %d", tx.tx_hash.hex(), receipt["blockNumber"])
    return receipt
