"""Fixed catalog of proxy infrastructure contracts.

Proxies are deployed with constructor arguments that point to a
placeholder contract, so their addresses depend only on the logical id
and salt, never on the admin or implementation. The real admin and
implementation are installed afterwards.

- Transparent proxies get their admin changed in the deployment transaction
  through a call routed via the placeholder, which is their initial admin

- Beacons start pointing at the placeholder and are upgraded later

All instances are created from registered templates, so the full proxy
bytecode is submitted to the chain only once.
"""

import logging
from dataclasses import dataclass

import eth_abi
from eth_typing import HexAddress
from web3 import Web3

from eth_deployer.abi import ArtifactSource, ContractFactory
from eth_deployer.address import Salt, proxy_salt
from eth_deployer.contract import ContractHandle
from eth_deployer.deployer import CallLike, Deployer, DeployerCall
from eth_deployer.interfaces import BEACON_PROXY, PLACEHOLDER, PROXY_ADMIN, TRANSPARENT_UPGRADEABLE_PROXY, UPGRADEABLE_BEACON

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TemplateDeployment:
    """Bootstrap result for one catalog entry."""

    name: str
    template_id: bytes
    address: HexAddress | None = None


def placeholder_call(placeholder: HexAddress | str, target: HexAddress | str, data: bytes) -> DeployerCall:
    """A call the placeholder forwards to ``target``.

    Used to act as the initial admin of freshly created transparent proxies.
    """
    payload = eth_abi.encode(["address", "bytes"], [Web3.to_checksum_address(target), bytes(data)])
    return DeployerCall(Web3.to_checksum_address(placeholder), payload)


class TemplateRegistry:
    """Deterministic addresses and deployments for the proxy infrastructure.

    One registry is created per run and threaded through the proxy protocol.

    .. code-block:: python

        templates = TemplateRegistry(deployer, artifacts)
        admin = templates.proxy_admin()
        proxy = templates.transparent_proxy("token", admin.address)

    """

    def __init__(self, deployer: Deployer, artifacts: ArtifactSource):
        self.deployer = deployer
        self.artifacts = artifacts

    @property
    def chain(self):
        return self.deployer.chain

    @property
    def signer(self):
        return self.deployer.signer

    def factory(self, name: str) -> ContractFactory:
        return self.artifacts.get_factory(name)

    def _deploy(self, name: str, args=(), salt: Salt = 0, id: str | None = None, calls=()) -> ContractHandle:
        return self.deployer.deploy_template_from_factory(self.factory(name), args, salt=salt, id=id, calls=calls)

    @property
    def placeholder_address(self) -> HexAddress:
        return self.deployer.factory_address(self.factory(PLACEHOLDER), (), salt=0)

    def placeholder(self) -> ContractHandle:
        """Deploy the placeholder implementation.

        Waits for the deployment, as proxies check their initial
        implementation has code.
        """
        handle = self._deploy(PLACEHOLDER, salt=0)
        handle.wait_deployed()
        return handle

    def proxy_admin_address(self, id: str | None = None) -> HexAddress:
        return self.deployer.factory_address(self.factory(PROXY_ADMIN), (), salt=self.signer.address, id=id)

    def proxy_admin(self, id: str | None = None, owner: HexAddress | str | None = None) -> ContractHandle:
        """Deploy the proxy admin of the current signer.

        Ownership moves from the shared deployer to ``owner``, the signer by default,
        in the deployment transaction.
        """
        factory = self.factory(PROXY_ADMIN)
        owner = Web3.to_checksum_address(owner or self.signer.address)
        calls = [factory.encode_function_call("transferOwnership", [owner])]
        return self._deploy(PROXY_ADMIN, salt=self.signer.address, id=id, calls=calls)

    def _transparent_proxy_args(self) -> tuple:
        placeholder = self.placeholder_address
        return (placeholder, placeholder, b"")

    def transparent_proxy_address(self, id: str | None = None, salt: Salt = 0) -> HexAddress:
        return self.deployer.factory_address(self.factory(TRANSPARENT_UPGRADEABLE_PROXY), self._transparent_proxy_args(), salt=proxy_salt(id, salt))

    def transparent_proxy(self, id: str | None, proxy_admin: HexAddress | str, salt: Salt = 0) -> ContractHandle:
        """Deploy a transparent proxy administered by ``proxy_admin``.

        The proxy keeps pointing at the placeholder until upgraded.
        """
        self.placeholder()
        factory = self.factory(TRANSPARENT_UPGRADEABLE_PROXY)
        address = self.transparent_proxy_address(id, salt)
        change_admin = factory.encode_function_call("changeAdmin", [Web3.to_checksum_address(proxy_admin)])
        calls = [placeholder_call(self.placeholder_address, address, change_admin)]
        return self._deploy(TRANSPARENT_UPGRADEABLE_PROXY, self._transparent_proxy_args(), salt=proxy_salt(id, salt), calls=calls)

    def upgradeable_beacon_address(self, id: str | None = None, salt: Salt = 0) -> HexAddress:
        return self.deployer.factory_address(self.factory(UPGRADEABLE_BEACON), (self.placeholder_address,), salt=proxy_salt(id, salt))

    def upgradeable_beacon(self, id: str | None = None, salt: Salt = 0, owner: HexAddress | str | None = None) -> ContractHandle:
        """Deploy a beacon pointing at the placeholder, owned by ``owner`` or the signer."""
        self.placeholder()
        factory = self.factory(UPGRADEABLE_BEACON)
        owner = Web3.to_checksum_address(owner or self.signer.address)
        calls = [factory.encode_function_call("transferOwnership", [owner])]
        return self._deploy(UPGRADEABLE_BEACON, (self.placeholder_address,), salt=proxy_salt(id, salt), calls=calls)

    def beacon_proxy_address(self, beacon: HexAddress | str, id: str | None = None, salt: Salt = 0) -> HexAddress:
        return self.deployer.factory_address(self.factory(BEACON_PROXY), (Web3.to_checksum_address(beacon), b""), salt=proxy_salt(id, salt))

    def beacon_proxy(self, beacon: HexAddress | str, id: str | None = None, salt: Salt = 0, calls: list[CallLike] = ()) -> ContractHandle:
        """Deploy a proxy following ``beacon``.

        :param calls:
            Post-deploy calls, raw calldata is executed against the proxy
        """
        args = (Web3.to_checksum_address(beacon), b"")
        return self._deploy(BEACON_PROXY, args, salt=proxy_salt(id, salt), calls=calls)

    def _template_args(self) -> dict[str, tuple]:
        placeholder = self.placeholder_address
        return {
            PLACEHOLDER: (),
            PROXY_ADMIN: (),
            TRANSPARENT_UPGRADEABLE_PROXY: (placeholder, placeholder, b""),
            UPGRADEABLE_BEACON: (placeholder,),
            BEACON_PROXY: (self.upgradeable_beacon_address(), b""),
        }

    def deploy_templates(self) -> dict[str, TemplateDeployment]:
        """Bootstrap a network.

        Registers every catalog template and deploys the placeholder,
        so later proxy deployments only reference template ids.
        """
        results = {}
        for name, args in self._template_args().items():
            template = self.deployer.create_template(self.factory(name), args)
            results[name] = TemplateDeployment(name=name, template_id=template)

        placeholder = self.placeholder()
        results[PLACEHOLDER].address = placeholder.address
        logger.info("Templates bootstrapped, placeholder at %s", placeholder.address)
        return results
