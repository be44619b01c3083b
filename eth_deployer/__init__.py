"""eth_deployer package root.

Deterministic deployment and upgrade orchestration for suites of contracts.

- :py:mod:`eth_deployer.address` derives CREATE2 addresses without touching the network

- :py:mod:`eth_deployer.deployer` deploys through the shared CREATE2 deployer contract

- :py:mod:`eth_deployer.environment` drives configurations through the deploy,
  initialize, configure and finalize phases

- :py:func:`eth_deployer.utils.setup_console_logging` sets up coloured console logs for scripts

"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"web3-ethereum-deployer needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
