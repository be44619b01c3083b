"""Access control role reconciliation.

Contracts administer roles, other contracts and accounts need them.
The role manager collects every needed grant across the suite, checks
which grants already exist and sends only the missing ones, in one
``multicall`` transaction per contract when the contract supports it.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from eth_typing import HexAddress
from eth_utils import keccak
from web3 import Web3

from eth_deployer.abi import ZERO_HASH
from eth_deployer.chain import CallReverted
from eth_deployer.confirmation import TransactionFailed, wait_for_transaction
from eth_deployer.contract import ContractHandle
from eth_deployer.signer import TransactionSigner

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Role:
    """Role symbol.

    The on-chain role id is the hash of the name, except for the
    OpenZeppelin default admin role which is zero.
    """

    name: str

    @property
    def role_id(self) -> bytes:
        if self.name == "DEFAULT_ADMIN_ROLE":
            return ZERO_HASH
        return keccak(text=self.name)

    def __str__(self):
        return self.name


DEFAULT_ADMIN_ROLE = Role("DEFAULT_ADMIN_ROLE")


@dataclass(frozen=True, slots=True)
class RoleRequest:
    """Need ``role`` on the contract of configuration ``target``.

    Use when more than one contract administers a role with the same name.
    """

    target: str
    role: Role


class RoleNotRegistered(Exception):
    """Nobody administers the requested role."""


@dataclass(slots=True)
class RoleGrantFailure:
    """A grant that could not be made."""

    contract: HexAddress
    role: Role
    account: HexAddress

    #: Configuration ids that asked for the grant
    requesters: list[str]

    error: Exception


@dataclass(slots=True)
class _Grant:
    role: Role
    account: HexAddress
    requesters: list[str] = field(default_factory=list)


class RoleManager:
    """Collect role grants and send the missing ones.

    .. code-block:: python

        roles = RoleManager(signer)
        roles.register_role(Role("MINTER_ROLE"), token)
        roles.group(token, Role("MINTER_ROLE"), vault.address, requester="vault")
        failures = roles.grant_all()

    """

    def __init__(self, signer: TransactionSigner, confirmations: int | None = None):
        self.signer = signer
        self.confirmations = confirmations

        #: Role name -> administering contract
        self.roles: dict[str, ContractHandle] = {}

        #: Configuration id -> contract
        self.configs: dict[str, ContractHandle] = {}

        #: Contract address -> grants
        self.grants: dict[HexAddress, list[_Grant]] = defaultdict(list)

        self._contracts: dict[HexAddress, ContractHandle] = {}
        self._contract_signers: dict[HexAddress, TransactionSigner] = {}

    def register_role(self, role: Role, contract: ContractHandle):
        """``contract`` administers ``role``."""
        if role.name in self.roles and self.roles[role.name].address != contract.address:
            logger.warning("Role %s administered by both %s and %s, using the latter", role, self.roles[role.name].address, contract.address)
        self.roles[role.name] = contract

    def register_config(self, id: str, contract: ContractHandle, roles: list[Role] = (), admin: TransactionSigner | None = None):
        """Register a configuration's contract and the roles it administers."""
        self.configs[id] = contract
        if admin is not None:
            self._contract_signers[contract.address] = admin
        for role in roles:
            self.register_role(role, contract)

    def get_contract_by_role(self, role: Role) -> ContractHandle:
        try:
            return self.roles[role.name]
        except KeyError as e:
            raise RoleNotRegistered(f"No contract administers role {role}") from e

    def get_contract_by_config(self, id: str) -> ContractHandle:
        try:
            return self.configs[id]
        except KeyError as e:
            raise RoleNotRegistered(f"No contract registered for configuration {id}") from e

    def group(self, contract: ContractHandle, role: Role, account: HexAddress | str, requester: str | None = None):
        """Queue a grant of ``role`` to ``account`` on ``contract``."""
        account = Web3.to_checksum_address(account)
        self._contracts[contract.address] = contract
        for grant in self.grants[contract.address]:
            if grant.role == role and grant.account == account:
                break
        else:
            grant = _Grant(role, account)
            self.grants[contract.address].append(grant)
        if requester and requester not in grant.requesters:
            grant.requesters.append(requester)

    def request(self, requester: str, account: HexAddress | str, request: Role | RoleRequest):
        """Queue a grant for a configuration's role requirement."""
        if isinstance(request, RoleRequest):
            contract = self.get_contract_by_config(request.target)
            role = request.role
        else:
            contract = self.get_contract_by_role(request)
            role = request
        self.group(contract, role, account, requester)

    def _missing(self, contract: ContractHandle, grants: list[_Grant]) -> list[_Grant]:
        missing = []
        for grant in grants:
            if contract.call("hasRole", grant.role.role_id, grant.account):
                logger.debug("%s already has %s on %s", grant.account, grant.role, contract.address)
                continue
            missing.append(grant)
        return missing

    def grant_all(self) -> list[RoleGrantFailure]:
        """Send all missing grants.

        Failures on one contract do not stop grants on others.

        :return:
            Grants that failed
        """
        failures = []
        for address, grants in self.grants.items():
            contract = self._contracts[address]
            signer = self._contract_signers.get(address, self.signer)
            try:
                missing = self._missing(contract, grants)
            except CallReverted as e:
                failures.extend(RoleGrantFailure(address, g.role, g.account, g.requesters, e) for g in grants)
                continue

            if not missing:
                continue

            logger.info("Granting %d roles on %s", len(missing), address)

            if contract.has_function("multicall"):
                payload = [contract.encode("grantRole", g.role.role_id, g.account) for g in missing]
                try:
                    tx = contract.transact("multicall", payload, signer=signer)
                    wait_for_transaction(contract.chain, tx, self.confirmations)
                except (CallReverted, TransactionFailed) as e:
                    failures.extend(RoleGrantFailure(address, g.role, g.account, g.requesters, e) for g in missing)
            else:
                for g in missing:
                    try:
                        tx = contract.transact("grantRole", g.role.role_id, g.account, signer=signer)
                        wait_for_transaction(contract.chain, tx, self.confirmations)
                    except (CallReverted, TransactionFailed) as e:
                        failures.append(RoleGrantFailure(address, g.role, g.account, g.requesters, e))

        return failures
