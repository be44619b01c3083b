"""Source verification boundary.

The block explorer backend is not part of this package. Plug in an
implementation of :py:class:`ContractVerifier` and use
:py:meth:`eth_deployer.environment.Environment.verify`.
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from eth_typing import HexAddress

logger = logging.getLogger(__name__)


#: Responses that mean there is nothing left to do
ALREADY_VERIFIED_MESSAGES = (
    "already verified",
    "bytecode doesn't match",
    "does not match",
)


class VerificationFailed(Exception):
    """Verification did not succeed after all attempts."""


@dataclass(slots=True)
class VerificationRequest:
    """What to verify."""

    id: str
    address: HexAddress
    contract_name: str
    constructor_args: bytes = b""


class ContractVerifier(ABC):
    """Submits contract source to a block explorer."""

    @abstractmethod
    def verify(self, address: HexAddress, constructor_args: bytes, contract_name: str):
        """Submit verification.

        :raise Exception:
            Any failure, the message is inspected for already verified cases
        """


def is_already_verified(e: Exception) -> bool:
    message = str(e).lower()
    return any(m in message for m in ALREADY_VERIFIED_MESSAGES)


def verify_contract(
    verifier: ContractVerifier,
    request: VerificationRequest,
    attempts: int = 3,
    interval: float = 3.0,
) -> bool:
    """Verify with retries.

    Already verified contracts and bytecode mismatches count as success,
    as resubmitting would not change the outcome.

    :raise VerificationFailed:
        All attempts failed
    """
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            verifier.verify(request.address, request.constructor_args, request.contract_name)
            logger.info("Verified %s at %s", request.id, request.address)
            return True
        except Exception as e:
            if is_already_verified(e):
                logger.info("%s at %s: %s", request.id, request.address, e)
                return True
            last_error = e
            logger.warning("Verification attempt %d/%d of %s failed: %s", attempt, attempts, request.id, e)
            if attempt < attempts:
                # Spread concurrent retries
                time.sleep(interval + random.random() * interval)

    raise VerificationFailed(f"Could not verify {request.id} at {request.address}: {last_error}") from last_error
