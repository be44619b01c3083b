"""ABI helpers and artifact loading."""

import json
from pathlib import Path

import eth_abi
import pytest

from eth_deployer.abi import (
    ArtifactDirectory,
    ArtifactNotFound,
    ContractFactory,
    FunctionNotFound,
    StaticArtifacts,
    encode_with_signature,
    get_function_selector,
    parse_artifact,
    split_signature_types,
)

OVERLOADED_ABI = [
    {"type": "constructor", "inputs": [{"type": "uint256", "name": "x"}]},
    {"type": "function", "name": "set", "inputs": [{"type": "uint256", "name": "a"}], "outputs": []},
    {"type": "function", "name": "set", "inputs": [{"type": "uint256", "name": "a"}, {"type": "uint256", "name": "b"}], "outputs": []},
    {"type": "function", "name": "get", "inputs": [], "outputs": [{"type": "uint256", "name": ""}]},
    {"type": "function", "name": "pair", "inputs": [], "outputs": [{"type": "uint256", "name": ""}, {"type": "address", "name": ""}]},
]


@pytest.fixture()
def factory() -> ContractFactory:
    return ContractFactory("Overloaded", OVERLOADED_ABI, b"\x60\x80")


def test_split_signature_types():
    assert split_signature_types("address,(address,bytes)[],uint256") == ["address", "(address,bytes)[]", "uint256"]
    assert split_signature_types("") == []


def test_encode_with_signature():
    """ERC-20 transfer selector is a9059cbb."""
    payload = encode_with_signature("transfer(address,uint256)", ["0x0000000000000000000000000000000000000001", 1])
    assert payload[0:4].hex() == "a9059cbb"
    assert len(payload) == 4 + 64


def test_encode_with_signature_tuple_args():
    payload = encode_with_signature("multi((address,bytes)[])", [[("0x0000000000000000000000000000000000000001", b"\x01")]])
    decoded = eth_abi.decode(["(address,bytes)[]"], payload[4:])
    assert decoded[0][0][1] == b"\x01"


def test_overloads_resolved_by_argument_count(factory):
    """Overloaded functions are picked by the number of arguments."""
    one = factory.encode_function_call("set", [1])
    two = factory.encode_function_call("set", [1, 2])
    assert one[0:4] != two[0:4]
    assert one[0:4] == get_function_selector(OVERLOADED_ABI[1])
    assert len(two) == 4 + 64


def test_unknown_function(factory):
    with pytest.raises(FunctionNotFound):
        factory.encode_function_call("missing", [])


def test_decode_function_output(factory):
    """Single outputs are unwrapped, multiple outputs stay a tuple."""
    assert factory.decode_function_output("get", eth_abi.encode(["uint256"], [5])) == 5
    value, address = factory.decode_function_output("pair", eth_abi.encode(["uint256", "address"], [5, "0x0000000000000000000000000000000000000001"]))
    assert value == 5
    assert address.lower() == "0x0000000000000000000000000000000000000001"


def test_init_code(factory):
    """Init code is bytecode followed by the encoded constructor arguments."""
    assert factory.init_code([3]) == b"\x60\x80" + eth_abi.encode(["uint256"], [3])


def test_parse_artifact_formats():
    """Foundry, Hardhat and Etherscan style artifacts are accepted."""
    foundry = parse_artifact("A", {"abi": OVERLOADED_ABI, "bytecode": {"object": "0x6080"}})
    hardhat = parse_artifact("B", {"abi": OVERLOADED_ABI, "bytecode": "0x6080"})
    etherscan = parse_artifact("C", OVERLOADED_ABI)
    assert foundry.bytecode == b"\x60\x80"
    assert hardhat.bytecode == b"\x60\x80"
    assert etherscan.bytecode == b""
    assert etherscan.has_function("get")


def test_artifact_directory(tmp_path: Path):
    """Artifacts are found anywhere under the root, debug files are skipped."""
    nested = tmp_path / "out" / "Token.sol"
    nested.mkdir(parents=True)
    (nested / "Token.json").write_text(json.dumps({"abi": OVERLOADED_ABI, "bytecode": {"object": "0x6080"}}))
    (nested / "Debug.dbg.json").write_text(json.dumps({"buildInfo": "x"}))

    artifacts = ArtifactDirectory(tmp_path)
    token = artifacts.get_factory("Token")
    assert token.name == "Token"
    assert token.bytecode == b"\x60\x80"

    with pytest.raises(ArtifactNotFound):
        artifacts.get_factory("Debug.dbg")


def test_static_artifacts(factory):
    artifacts = StaticArtifacts([factory])
    assert artifacts.get_factory("Overloaded") is factory
    with pytest.raises(ArtifactNotFound):
        artifacts.get_factory("Missing")
