"""Shared fixtures running against the in-process simulated chain."""

import pytest
from eth_typing import HexAddress

from eth_deployer.abi import StaticArtifacts
from eth_deployer.config import EnvironmentConfig
from eth_deployer.deployer import Deployer
from eth_deployer.signer import NodeAccountSigner
from eth_deployer.templates import TemplateRegistry
from eth_deployer.testing import SimulatedChain


@pytest.fixture()
def chain() -> SimulatedChain:
    """Fresh chain with the shared deployer installed."""
    return SimulatedChain()


@pytest.fixture()
def artifacts(chain) -> StaticArtifacts:
    return chain.artifacts


@pytest.fixture()
def deployer_address(chain) -> HexAddress:
    """Deploy account.

    Do some account allocation for tests.
    """
    return chain.get_signers()[0]


@pytest.fixture()
def user_1(chain) -> HexAddress:
    """User account.

    Do some account allocation for tests.
    """
    return chain.get_signers()[1]


@pytest.fixture()
def signer(deployer_address) -> NodeAccountSigner:
    return NodeAccountSigner(deployer_address)


@pytest.fixture()
def deployer(chain, signer) -> Deployer:
    return Deployer(chain, signer)


@pytest.fixture()
def templates(deployer, artifacts) -> TemplateRegistry:
    return TemplateRegistry(deployer, artifacts)


@pytest.fixture()
def config() -> EnvironmentConfig:
    """Run configuration not affected by the shell environment."""
    return EnvironmentConfig()
