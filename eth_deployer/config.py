"""Run configuration from environment variables.

=============================  ==========================================================
Variable                       Meaning
=============================  ==========================================================
``DEFAULT_SALT``               Salt used when a configuration does not give one
``CONFIRMATIONS``              Blocks to wait per transaction, ``0`` means do not wait
``CREATE2_FORCE_INITIALIZE``   ``*`` or comma separated ids to initialize again
``CREATE2_FORCE_CONFIGURE``    ``*`` or comma separated ids to configure again
``GAS_PRICE_MULTIPLIER``       Multiplier on the node gas price for the hot wallet signer
``FAIL_ON_ERROR``              Raise on the first node failure instead of collecting
``DEPLOYER``                   Address of the shared CREATE2 deployer contract
``SAFE_SERVICE_URL``           Safe transaction service for multisig proposals
``PRIVATE_KEY``                Hot wallet key of the run signer, ``0x`` prefixed
=============================  ==========================================================
"""

import os
from dataclasses import dataclass, field

from eth_deployer.address import CREATE2_DEPLOYER_ADDRESS


def _parse_id_list(value: str | None) -> frozenset[str] | bool:
    if not value:
        return False
    value = value.strip()
    if value == "*":
        return True
    return frozenset(v.strip() for v in value.split(",") if v.strip())


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(slots=True)
class EnvironmentConfig:
    """Knobs for one deployment run."""

    #: Salt used when a configuration does not set one
    default_salt: int | str = 0

    #: ``None`` waits one block, ``0`` is fire-and-forget
    confirmations: int | None = None

    #: ``True`` forces every id, a set forces the listed ids
    force_initialize: frozenset[str] | bool = False

    #: ``True`` forces every id, a set forces the listed ids
    force_configure: frozenset[str] | bool = False

    #: Re-raise node failures immediately
    fail_on_error: bool = False

    gas_price_multiplier: float = 1.0

    deployer_address: str = CREATE2_DEPLOYER_ADDRESS

    safe_service_url: str | None = None

    #: Hot wallet key for the run signer, node accounts are used if not set
    private_key: str | None = field(default=None, repr=False)

    def is_forced_initialize(self, id: str) -> bool:
        if self.force_initialize is True:
            return True
        return bool(self.force_initialize) and id in self.force_initialize

    def is_forced_configure(self, id: str) -> bool:
        if self.force_configure is True:
            return True
        return bool(self.force_configure) and id in self.force_configure

    @classmethod
    def from_env(cls, environ: dict = None) -> "EnvironmentConfig":
        """Read the configuration from environment variables."""
        environ = os.environ if environ is None else environ

        confirmations = environ.get("CONFIRMATIONS")
        return cls(
            default_salt=environ.get("DEFAULT_SALT") or 0,
            confirmations=int(confirmations) if confirmations not in (None, "") else None,
            force_initialize=_parse_id_list(environ.get("CREATE2_FORCE_INITIALIZE")),
            force_configure=_parse_id_list(environ.get("CREATE2_FORCE_CONFIGURE")),
            fail_on_error=_parse_bool(environ.get("FAIL_ON_ERROR")),
            gas_price_multiplier=float(environ.get("GAS_PRICE_MULTIPLIER") or 1.0),
            deployer_address=environ.get("DEPLOYER") or CREATE2_DEPLOYER_ADDRESS,
            safe_service_url=environ.get("SAFE_SERVICE_URL") or None,
            private_key=environ.get("PRIVATE_KEY") or None,
        )
