"""ABI encoding helpers and compiled contract artifacts.

- Load solc, Hardhat and Foundry compiler artifacts

- Encode constructor arguments and function calls by function name

- Decode function return values

The deployer core never parses Solidity source. It only needs bytecode
and an ABI description per contract name, supplied by an :py:class:`ArtifactSource`.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

import eth_abi
from eth_utils import keccak, to_checksum_address
from eth_utils.abi import collapse_if_tuple
from hexbytes import HexBytes

logger = logging.getLogger(__name__)


#: Ethereum 0x0000000000000000000000000000000000000000 address as a string.
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

#: bytes32(0)
ZERO_HASH = b"\x00" * 32


class ArtifactNotFound(Exception):
    """The compile collaborator does not know the contract name."""


class FunctionNotFound(Exception):
    """The ABI does not have a matching function for the name and arguments."""


def split_signature_types(type_list: str) -> list[str]:
    """Split a comma separated Solidity type list, respecting tuple brackets.

    .. code-block:: python

        assert split_signature_types("address,(address,bytes)[],uint256") == ["address", "(address,bytes)[]", "uint256"]

    """
    types = []
    depth = 0
    current = ""
    for c in type_list:
        if c == "(":
            depth += 1
        elif c == ")":
            depth -= 1
        if c == "," and depth == 0:
            types.append(current.strip())
            current = ""
        else:
            current += c
    if current.strip():
        types.append(current.strip())
    return types


def encode_with_signature(function_signature: str, args: Sequence) -> bytes:
    """Mimic Solidity's abi.encodeWithSignature() in Python.

    Example:

    .. code-block:: python

            payload = encode_with_signature("initialize(address)", [my_address])
            assert type(payload) == bytes

    :param function_signature:
        Solidity function signature that can be hashed to a selector.

        ABI will be extracted from this signature.

    :param args:
        Argument values to be encoded.
    """

    assert type(args) in (tuple, list)

    function_selector = keccak(text=function_signature)[0:4]
    selector_text = function_signature[function_signature.find("(") + 1 : function_signature.rfind(")")]
    arg_types = split_signature_types(selector_text)
    encoded_args = eth_abi.encode(arg_types, args)
    return function_selector + encoded_args


def get_abi_input_types(fn_abi: dict) -> list[str]:
    return [collapse_if_tuple(i) for i in fn_abi.get("inputs", [])]


def get_abi_output_types(fn_abi: dict) -> list[str]:
    return [collapse_if_tuple(o) for o in fn_abi.get("outputs", [])]


def checksum_addresses(abi_type: str, value: Any) -> Any:
    """Checksum decoded addresses, also inside arrays and tuples, like web3 does for return values."""
    if abi_type.endswith("]"):
        inner = abi_type[: abi_type.rfind("[")]
        return [checksum_addresses(inner, v) for v in value]
    if abi_type.startswith("("):
        types = split_signature_types(abi_type[1:-1])
        return tuple(checksum_addresses(t, v) for t, v in zip(types, value))
    if abi_type == "address":
        return to_checksum_address(value)
    return value


def get_function_signature(fn_abi: dict) -> str:
    """Solidity signature like ``transfer(address,uint256)``."""
    return f"{fn_abi['name']}({','.join(get_abi_input_types(fn_abi))})"


def get_function_selector(fn_abi: dict) -> bytes:
    """4-byte function selector for a function ABI entry."""
    return keccak(text=get_function_signature(fn_abi))[0:4]


@dataclass(frozen=True)
class ContractFactory:
    """Bytecode and ABI of one compiled contract.

    Works as the typed binding the deployer uses to encode constructor
    arguments and function calls.
    """

    #: Contract name as it appears in the compiler output
    name: str

    #: ABI as a list of JSON entries
    abi: list = field(repr=False, hash=False, compare=False)

    #: Creation bytecode, without constructor arguments
    bytecode: bytes = field(repr=False)

    def __post_init__(self):
        assert isinstance(self.bytecode, bytes), f"Bytecode must be bytes, got {type(self.bytecode)}"

    @property
    def constructor_abi(self) -> dict | None:
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return entry
        return None

    def get_function_abis(self, name: str) -> list[dict]:
        return [e for e in self.abi if e.get("type") == "function" and e.get("name") == name]

    def has_function(self, name: str) -> bool:
        return len(self.get_function_abis(name)) > 0

    def get_function_abi(self, name: str, args: Sequence = None) -> dict:
        """Resolve a function by name.

        Overloaded functions are told apart by the number of arguments.

        :raise FunctionNotFound:
            No function matches
        """
        candidates = self.get_function_abis(name)
        if args is not None and len(candidates) > 1:
            candidates = [c for c in candidates if len(c.get("inputs", [])) == len(args)]
        if not candidates:
            raise FunctionNotFound(f"Contract {self.name} has no function {name} taking {len(args or [])} arguments")
        return candidates[0]

    def encode_constructor_args(self, args: Sequence = ()) -> bytes:
        """ABI encode constructor arguments.

        :return:
            Encoded arguments, empty if the contract has no constructor arguments
        """
        ctor = self.constructor_abi
        if ctor is None:
            assert not args, f"Contract {self.name} has no constructor, but got arguments {args}"
            return b""
        types = get_abi_input_types(ctor)
        assert len(types) == len(args), f"Contract {self.name} constructor takes {len(types)} arguments, got {len(args)}"
        return eth_abi.encode(types, list(args))

    def init_code(self, args: Sequence = ()) -> bytes:
        """Creation bytecode followed by encoded constructor arguments."""
        return self.bytecode + self.encode_constructor_args(args)

    def encode_function_call(self, name: str, args: Sequence = ()) -> HexBytes:
        """Encode function selector + its arguments as data payload.

        :return:
            Solidity's function selector + argument payload.
        """
        fn_abi = self.get_function_abi(name, args)
        types = get_abi_input_types(fn_abi)
        try:
            encoded = eth_abi.encode(types, list(args))
        except Exception as e:
            raise RuntimeError(f"Could not encode ABI: {get_function_signature(fn_abi)}, args: {args}") from e
        return HexBytes(get_function_selector(fn_abi) + encoded)

    def decode_function_output(self, name: str, data: bytes, args: Sequence = None) -> Any:
        """Decode raw return value of a function.

        :return:
            A single value for single output functions, a tuple otherwise
        """
        fn_abi = self.get_function_abi(name, args)
        types = get_abi_output_types(fn_abi)
        if not types:
            return None
        decoded = [checksum_addresses(t, v) for t, v in zip(types, eth_abi.decode(types, bytes(data)))]
        if len(decoded) == 1:
            return decoded[0]
        return tuple(decoded)


def parse_artifact(name: str, contract_interface: dict | list) -> ContractFactory:
    """Create a factory from a compiler artifact.

    - ABI file can be a solc compiling artifact, Foundry output or Etherscan copy-pasted ABI.
    """
    if type(contract_interface) == list:
        # Etherscan
        abi = contract_interface
        bytecode = None
    else:
        abi = contract_interface["abi"]
        bytecode = contract_interface.get("bytecode")

        if type(bytecode) == dict:
            # Sol 0.8 / Forge?
            # Contains keys object, sourceMap, linkReferences
            bytecode = bytecode["object"]

    if not bytecode:
        bytecode_bytes = b""
    else:
        bytecode_bytes = bytes(HexBytes(bytecode))

    return ContractFactory(name=name, abi=abi, bytecode=bytecode_bytes)


class ArtifactSource(ABC):
    """Compile collaborator: supplies bytecode and ABI per contract name."""

    @abstractmethod
    def get_factory(self, name: str) -> ContractFactory:
        """Get a contract factory by its name.

        :raise ArtifactNotFound:
            Unknown name
        """


class StaticArtifacts(ArtifactSource):
    """Artifacts from already constructed factories."""

    def __init__(self, factories: Sequence[ContractFactory] = ()):
        self.factories = {f.name: f for f in factories}

    def add(self, factory: ContractFactory):
        self.factories[factory.name] = factory

    def get_factory(self, name: str) -> ContractFactory:
        try:
            return self.factories[name]
        except KeyError as e:
            raise ArtifactNotFound(f"No artifact for contract {name}") from e


class ArtifactDirectory(ArtifactSource):
    """Read compiler output from a directory tree.

    Example:

    .. code-block:: python

        artifacts = ArtifactDirectory(Path("out"))
        token = artifacts.get_factory("MyToken")

    Files are looked up as ``<name>.json`` anywhere under the root.
    Hardhat debug files ``*.dbg.json`` are ignored.
    """

    def __init__(self, root: Path):
        assert isinstance(root, Path), f"Expected Path, got {root}"
        self.root = root

    @lru_cache(maxsize=None)
    def _index(self) -> dict[str, Path]:
        index = {}
        for path in sorted(self.root.rglob("*.json")):
            if path.name.endswith(".dbg.json"):
                continue
            index.setdefault(path.stem, path)
        logger.debug("Indexed %d artifacts under %s", len(index), self.root)
        return index

    @lru_cache(maxsize=512)
    def get_factory(self, name: str) -> ContractFactory:
        path = self._index().get(name)
        if path is None:
            raise ArtifactNotFound(f"No artifact {name}.json under {self.root}")
        with open(path, "rt", encoding="utf-8") as f:
            contract_interface = json.load(f)
        return parse_artifact(name, contract_interface)
