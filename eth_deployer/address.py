"""Deterministic CREATE2 address derivation.

All functions here are pure. They do not touch the network and give
the same result on every chain, as long as the shared deployer contract
lives at the same address.

.. code-block:: python

    from eth_deployer.address import factory_address

    address = factory_address(token_factory, ["Token", "TKN"], salt=0, id="token")

"""

from typing import Sequence, TypeAlias

from eth_typing import HexAddress
from eth_utils import keccak, to_canonical_address, to_checksum_address
from hexbytes import HexBytes

from eth_deployer.abi import ContractFactory

#: Where the shared CREATE2 deployer contract is deployed on every supported network
CREATE2_DEPLOYER_ADDRESS = "0x45A1A1a7d02436e0D83a15E177a551F4e8B3a33c"

#: EIP-1167 minimal proxy creation code before the target address
CLONE_PREFIX = bytes.fromhex("3d602d80600a3d3981f3363d3d373d3d3d363d73")

#: EIP-1167 minimal proxy creation code after the target address
CLONE_SUFFIX = bytes.fromhex("5af43d82803e903d91602b57fd5bf3")

#: Salt can be given as an int, a hex string, an address or raw bytes
Salt: TypeAlias = int | str | bytes


def salt_to_bytes(salt: Salt) -> bytes:
    """Convert a salt to its minimal big endian byte representation.

    Zero is a single zero byte, so ``0`` and ``"0x00"`` fold into identity hashes the same way.
    """
    if isinstance(salt, (bytes, bytearray, HexBytes)):
        value = int.from_bytes(bytes(salt), "big")
    elif isinstance(salt, str):
        if salt.startswith("0x") or salt.startswith("0X"):
            value = int(salt, 16) if len(salt) > 2 else 0
        else:
            value = int(salt)
    elif isinstance(salt, int):
        value = salt
    else:
        raise TypeError(f"Unsupported salt type: {type(salt)}")

    assert value >= 0, f"Salt must not be negative: {salt}"

    if value == 0:
        return b"\x00"

    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def generate_salt(id: str | None, salt: Salt) -> bytes:
    """Create the 32 byte salt passed to CREATE2.

    When ``id`` is given it is folded into the salt, so two logical contracts
    sharing bytecode and arguments land on different addresses.

    :param id:
        Optional logical identifier

    :param salt:
        User salt

    :return:
        32 bytes
    """
    salt_bytes = salt_to_bytes(salt)
    if id:
        return keccak(id.encode("utf-8") + salt_bytes)
    assert len(salt_bytes) <= 32, f"Salt does not fit in 32 bytes: {salt}"
    return salt_bytes.rjust(32, b"\x00")


def create2_address(deployer_address: HexAddress | str, salt: bytes, init_code_hash: bytes) -> HexAddress:
    """The CREATE2 formula.

    ``keccak256(0xff ++ deployer ++ salt ++ keccak256(init_code))[12:]``
    """
    assert len(salt) == 32, f"Salt must be 32 bytes, got {len(salt)}"
    assert len(init_code_hash) == 32, f"Init code hash must be 32 bytes, got {len(init_code_hash)}"
    digest = keccak(b"\xff" + to_canonical_address(deployer_address) + salt + init_code_hash)
    return to_checksum_address(digest[12:])


def deploy_address(
    init_code: bytes,
    salt: Salt = 0,
    id: str | None = None,
    deployer_address: HexAddress | str = CREATE2_DEPLOYER_ADDRESS,
) -> HexAddress:
    """Address of a contract created from raw init code (bytecode ++ encoded args)."""
    return create2_address(deployer_address, generate_salt(id, salt), keccak(init_code))


def factory_address(
    factory: ContractFactory,
    args: Sequence = (),
    salt: Salt = 0,
    id: str | None = None,
    deployer_address: HexAddress | str = CREATE2_DEPLOYER_ADDRESS,
) -> HexAddress:
    """Address of a contract deployed from a factory with the given constructor arguments."""
    return deploy_address(factory.init_code(args), salt, id, deployer_address)


def template_id(init_code: bytes) -> bytes:
    """Content hash a template is registered under."""
    return keccak(init_code)


def template_address(
    template: bytes,
    salt: Salt = 0,
    id: str | None = None,
    deployer_address: HexAddress | str = CREATE2_DEPLOYER_ADDRESS,
) -> HexAddress:
    """Address of a template instance.

    The template id is the hash of the init code, so the instance address
    equals :py:func:`deploy_address` for the same init code and salt.
    """
    return create2_address(deployer_address, generate_salt(id, salt), template)


def clone_init_code(target: HexAddress | str) -> bytes:
    """EIP-1167 minimal proxy creation code delegating to ``target``."""
    return CLONE_PREFIX + to_canonical_address(target) + CLONE_SUFFIX


def clone_address(
    target: HexAddress | str,
    salt: Salt = 0,
    id: str | None = None,
    deployer_address: HexAddress | str = CREATE2_DEPLOYER_ADDRESS,
) -> HexAddress:
    """Address of a minimal proxy clone of ``target``."""
    return deploy_address(clone_init_code(target), salt, id, deployer_address)


def proxy_salt(id: str | None, salt: Salt = 0) -> bytes:
    """Salt for proxy templates.

    Proxies share bytecode and constructor arguments, so the logical id
    is the only thing telling them apart.
    """
    return keccak((id or "default").encode("utf-8") + salt_to_bytes(salt))


def hex_salt(salt: bytes) -> str:
    """Human readable salt for logging."""
    return "0x" + bytes(salt).hex()
