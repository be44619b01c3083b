"""Deploy contracts through the shared CREATE2 deployer contract.

The shared deployer lives at the same address on every supported network,
so a contract lands on the same address everywhere given the same
bytecode, constructor arguments and salt.

Example:

.. code-block:: python

    deployer = Deployer(chain, signer)
    token = deployer.deploy(token_factory, args=["Token", "TKN"], id="token")
    token.wait_deployed()

    # Second run is a no-op
    again = deployer.deploy(token_factory, args=["Token", "TKN"], id="token")
    assert again.address == token.address
    assert not again.newly_deployed

"""

import logging
from dataclasses import dataclass
from typing import Sequence

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_deployer.abi import ContractFactory
from eth_deployer.address import (
    CREATE2_DEPLOYER_ADDRESS,
    Salt,
    clone_address,
    clone_init_code,
    deploy_address,
    generate_salt,
    hex_salt,
    template_address,
    template_id,
)
from eth_deployer.chain import ChainRPC
from eth_deployer.confirmation import TransactionFailed, wait_for_transaction
from eth_deployer.contract import ContractHandle
from eth_deployer.interfaces import CREATE2_DEPLOYER_ABI
from eth_deployer.signer import TransactionSigner

logger = logging.getLogger(__name__)


#: ABI-only binding for the shared deployer
CREATE2_DEPLOYER_FACTORY = ContractFactory("Create2Deployer", CREATE2_DEPLOYER_ABI, b"")


class DeployerNotBootstrapped(Exception):
    """The shared CREATE2 deployer is not deployed on this network yet."""


class ContractDeploymentFailed(Exception):
    """Did not get successful tx receipt from a deployment."""

    def __init__(self, tx_hash, msg):
        super().__init__(msg)
        self.tx_hash = tx_hash


@dataclass(frozen=True, slots=True)
class DeployerCall:
    """A post-deploy call executed by the shared deployer in the deployment transaction."""

    target: HexAddress
    data: bytes

    def as_tuple(self) -> tuple:
        return (Web3.to_checksum_address(self.target), bytes(self.data))


#: A post-deploy call can be raw calldata for the new contract or an explicit target and data
CallLike = DeployerCall | bytes | HexBytes | tuple


class Deployer:
    """Deterministic deployments through the shared deployer contract.

    - All entry points check the shared deployer exists first

    - Deploying something already on chain is a no-op returning a handle
      to the existing contract

    """

    def __init__(
        self,
        chain: ChainRPC,
        signer: TransactionSigner,
        address: HexAddress | str = CREATE2_DEPLOYER_ADDRESS,
        default_salt: Salt = 0,
        confirmations: int | None = None,
    ):
        self.chain = chain
        self.signer = signer
        self.address = Web3.to_checksum_address(address)
        self.default_salt = default_salt
        self.confirmations = confirmations
        self.contract = ContractHandle(chain, CREATE2_DEPLOYER_FACTORY, self.address, signer, confirmations=confirmations)
        self._validated = False

    def __repr__(self):
        return f"<Deployer {self.address} signer {self.signer}>"

    def validate(self):
        """Check the shared deployer is on this network.

        :raise DeployerNotBootstrapped:
            If there is no code at the deployer address
        """
        if self._validated:
            return
        if not self.chain.has_code(self.address):
            raise DeployerNotBootstrapped(f"Create2 deployer not deployed on this network yet: {self.address}, chain {self.chain.chain_id()}")
        self._validated = True

    def _salt(self, salt: Salt | None) -> Salt:
        return self.default_salt if salt is None else salt

    def format_calls(self, calls: Sequence[CallLike], contract_address: HexAddress | str) -> list[tuple]:
        """Normalise post-deploy calls.

        Raw calldata targets the contract being deployed.
        """
        formatted = []
        for call in calls:
            if isinstance(call, DeployerCall):
                formatted.append(call.as_tuple())
            elif isinstance(call, (bytes, HexBytes)):
                formatted.append((Web3.to_checksum_address(contract_address), bytes(call)))
            else:
                target, data = call
                formatted.append((Web3.to_checksum_address(target), bytes(HexBytes(data))))
        return formatted

    def factory_address(self, factory: ContractFactory, args: Sequence = (), salt: Salt | None = None, id: str | None = None) -> HexAddress:
        return deploy_address(factory.init_code(args), self._salt(salt), id, self.address)

    def clone_address(self, target: HexAddress | str, salt: Salt | None = None, id: str | None = None) -> HexAddress:
        return clone_address(target, self._salt(salt), id, self.address)

    def template_address(self, template: bytes, salt: Salt | None = None, id: str | None = None) -> HexAddress:
        return template_address(template, self._salt(salt), id, self.address)

    def deploy(
        self,
        factory: ContractFactory,
        args: Sequence = (),
        salt: Salt | None = None,
        id: str | None = None,
        calls: Sequence[CallLike] = (),
        overrides: dict | None = None,
    ) -> ContractHandle:
        """Deploy a contract, or return the existing one.

        :param factory:
            Bytecode and ABI

        :param args:
            Constructor arguments

        :param salt:
            Salt, the deployer default salt if not given

        :param id:
            Logical id folded into the salt

        :param calls:
            Calls executed by the shared deployer right after creation,
            in the same transaction. Raw calldata targets the new contract.

        :param overrides:
            Transaction overrides like gas

        :return:
            Handle to the contract. Call :py:meth:`ContractHandle.wait_deployed` to wait for a new deployment.
        """
        return self.deploy_artifact(factory, factory.encode_constructor_args(args), salt, id, calls, overrides)

    def deploy_artifact(
        self,
        factory: ContractFactory,
        encoded_args: bytes = b"",
        salt: Salt | None = None,
        id: str | None = None,
        calls: Sequence[CallLike] = (),
        overrides: dict | None = None,
    ) -> ContractHandle:
        """Deploy with pre-encoded constructor arguments."""
        self.validate()

        init_code = factory.bytecode + encoded_args
        salt_bytes = generate_salt(id, self._salt(salt))
        address = deploy_address(init_code, salt_bytes, None, self.address)

        if self.chain.has_code(address):
            logger.debug("%s already deployed at %s", factory.name, address)
            return ContractHandle(self.chain, factory, address, self.signer, confirmations=self.confirmations)

        logger.info("Deploying %s at %s, salt %s", factory.name, address, hex_salt(salt_bytes))
        tx = self.contract.transact(
            "deploy",
            init_code,
            salt_bytes,
            self.format_calls(calls, address),
            overrides=overrides,
        )
        return ContractHandle(self.chain, factory, address, self.signer, deploy_transaction=tx, confirmations=self.confirmations)

    def clone(
        self,
        target: HexAddress | str,
        salt: Salt | None = None,
        id: str | None = None,
        factory: ContractFactory | None = None,
    ) -> ContractHandle:
        """Deploy an EIP-1167 minimal proxy clone of ``target``.

        :param factory:
            ABI for the returned handle, usually the factory of the target
        """
        self.validate()

        salt_bytes = generate_salt(id, self._salt(salt))
        address = deploy_address(clone_init_code(target), salt_bytes, None, self.address)
        factory = factory or ContractFactory("Clone", [], b"")

        if self.chain.has_code(address):
            logger.debug("Clone of %s already deployed at %s", target, address)
            return ContractHandle(self.chain, factory, address, self.signer, confirmations=self.confirmations)

        logger.info("Cloning %s to %s", target, address)
        tx = self.contract.transact("clone", Web3.to_checksum_address(target), salt_bytes)
        return ContractHandle(self.chain, factory, address, self.signer, deploy_transaction=tx, confirmations=self.confirmations)

    def template_exists(self, template: bytes) -> bool:
        self.validate()
        return self.contract.call("templateExists", template)

    def create_template(self, factory: ContractFactory, args: Sequence = ()) -> bytes:
        """Register init code once under its content hash.

        Transacts only if the template does not exist yet.

        :return:
            Template id
        """
        init_code = factory.init_code(args)
        template = template_id(init_code)
        if self.template_exists(template):
            logger.debug("Template %s exists: %s", factory.name, template.hex())
            return template

        logger.info("Creating template %s: %s", factory.name, template.hex())
        tx = self.contract.transact("createTemplate", init_code)
        try:
            wait_for_transaction(self.chain, tx, self.confirmations)
        except TransactionFailed as e:
            raise ContractDeploymentFailed(e.tx_hash, f"Could not create template {factory.name}") from e
        return template

    def deploy_template(
        self,
        template: bytes,
        factory: ContractFactory,
        salt: Salt | None = None,
        id: str | None = None,
        calls: Sequence[CallLike] = (),
        overrides: dict | None = None,
    ) -> ContractHandle:
        """Instantiate a registered template.

        :param factory:
            ABI for the returned handle
        """
        self.validate()

        salt_bytes = generate_salt(id, self._salt(salt))
        address = template_address(template, salt_bytes, None, self.address)

        if self.chain.has_code(address):
            logger.debug("Template instance %s already deployed at %s", factory.name, address)
            return ContractHandle(self.chain, factory, address, self.signer, confirmations=self.confirmations)

        logger.info("Deploying template %s at %s, salt %s", factory.name, address, hex_salt(salt_bytes))
        tx = self.contract.transact(
            "deployTemplate",
            template,
            salt_bytes,
            self.format_calls(calls, address),
            overrides=overrides,
        )
        return ContractHandle(self.chain, factory, address, self.signer, deploy_transaction=tx, confirmations=self.confirmations)

    def deploy_template_from_factory(
        self,
        factory: ContractFactory,
        args: Sequence = (),
        salt: Salt | None = None,
        id: str | None = None,
        calls: Sequence[CallLike] = (),
        overrides: dict | None = None,
    ) -> ContractHandle:
        """Register the template when needed, then instantiate it.

        Ends up at the same address as :py:meth:`deploy` would.
        """
        self.validate()

        init_code = factory.init_code(args)
        address = deploy_address(init_code, self._salt(salt), id, self.address)
        if self.chain.has_code(address):
            logger.debug("%s already deployed at %s", factory.name, address)
            return ContractHandle(self.chain, factory, address, self.signer, confirmations=self.confirmations)

        template = self.create_template(factory, args)
        return self.deploy_template(template, factory, salt, id, calls, overrides)
