"""Minimal ABIs of the infrastructure contracts the deployer talks to.

Only the functions the deployer calls are listed. Bytecode for these
comes from the compile collaborator under the names in :py:data:`TEMPLATE_NAMES`.
"""


def _param(type: str, name: str = "", components: list = None) -> dict:
    param = {"type": type, "name": name}
    if components is not None:
        param["components"] = components
    return param


def _function(name: str, inputs: list = (), outputs: list = (), state_mutability="nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": list(inputs),
        "outputs": list(outputs),
        "stateMutability": state_mutability,
    }


def _constructor(inputs: list = (), state_mutability="nonpayable") -> dict:
    return {"type": "constructor", "inputs": list(inputs), "stateMutability": state_mutability}


#: Post-deploy call struct used by the deployer contract
CALL_COMPONENTS = [_param("address", "target"), _param("bytes", "data")]

#: On-chain deployment record struct
DEPLOYMENT_INFO_COMPONENTS = [
    _param("address", "owner"),
    _param("bool", "initialized"),
    _param("bytes32", "hash"),
    _param("uint256", "block"),
    _param("uint256", "timestamp"),
    _param("bytes32", "constructSettings"),
    _param("bytes32", "initializeSettings"),
    _param("bytes32", "lastConfigureSettings"),
]

_OWNABLE = [
    _function("owner", outputs=[_param("address")], state_mutability="view"),
    _function("transferOwnership", [_param("address", "newOwner")]),
]

_MULTICALL = [
    _function("multicall", [_param("bytes[]", "data")], [_param("bytes[]", "results")]),
]

CREATE2_DEPLOYER_ABI = [
    _function("deploy", [_param("bytes", "bytecode"), _param("bytes32", "salt"), _param("tuple[]", "calls", CALL_COMPONENTS)], [_param("address")], "payable"),
    _function("deployTemplate", [_param("bytes32", "templateId"), _param("bytes32", "salt"), _param("tuple[]", "calls", CALL_COMPONENTS)], [_param("address")], "payable"),
    _function("createTemplate", [_param("bytes", "bytecode")], [_param("bytes32", "templateId")]),
    _function("templateExists", [_param("bytes32", "templateId")], [_param("bool")], "view"),
    _function("templateAddress", [_param("bytes32", "templateId"), _param("bytes32", "salt")], [_param("address")], "view"),
    _function("clone", [_param("address", "target"), _param("bytes32", "salt")], [_param("address")]),
    _function("cloneAddress", [_param("address", "target"), _param("bytes32", "salt")], [_param("address")], "view"),
]

DEPLOYMENT_REGISTRY_ABI = [
    _function("register", [_param("address", "target"), _param("tuple", "info", DEPLOYMENT_INFO_COMPONENTS)]),
    _function("initialized", [_param("address", "target"), _param("bytes32", "settingsId")]),
    _function("configured", [_param("address", "target"), _param("bytes32", "settingsId")]),
    _function("deploymentInfo", [_param("address", "target")], [_param("tuple", "info", DEPLOYMENT_INFO_COMPONENTS)], "view"),
] + _MULTICALL

PLACEHOLDER_ABI = [
    {"type": "fallback", "stateMutability": "payable"},
]

PROXY_ADMIN_ABI = [
    _function("getProxyImplementation", [_param("address", "proxy")], [_param("address")], "view"),
    _function("getProxyAdmin", [_param("address", "proxy")], [_param("address")], "view"),
    _function("changeProxyAdmin", [_param("address", "proxy"), _param("address", "newAdmin")]),
    _function("upgrade", [_param("address", "proxy"), _param("address", "implementation")]),
    _function("upgradeAndCall", [_param("address", "proxy"), _param("address", "implementation"), _param("bytes", "data")], state_mutability="payable"),
] + _OWNABLE

TRANSPARENT_UPGRADEABLE_PROXY_ABI = [
    _constructor([_param("address", "_logic"), _param("address", "admin_"), _param("bytes", "_data")], "payable"),
    _function("admin", outputs=[_param("address")]),
    _function("implementation", outputs=[_param("address")]),
    _function("changeAdmin", [_param("address", "newAdmin")]),
    _function("upgradeTo", [_param("address", "newImplementation")]),
    _function("upgradeToAndCall", [_param("address", "newImplementation"), _param("bytes", "data")], state_mutability="payable"),
]

UPGRADEABLE_BEACON_ABI = [
    _constructor([_param("address", "implementation_")]),
    _function("implementation", outputs=[_param("address")], state_mutability="view"),
    _function("upgradeTo", [_param("address", "newImplementation")]),
] + _OWNABLE

BEACON_PROXY_ABI = [
    _constructor([_param("address", "beacon"), _param("bytes", "data")], "payable"),
]

ACCESS_CONTROL_ABI = [
    _function("hasRole", [_param("bytes32", "role"), _param("address", "account")], [_param("bool")], "view"),
    _function("grantRole", [_param("bytes32", "role"), _param("address", "account")]),
    _function("getRoleAdmin", [_param("bytes32", "role")], [_param("bytes32")], "view"),
]

#: Contract names of the fixed template catalog, in bootstrap order
PLACEHOLDER = "Placeholder"
PROXY_ADMIN = "ProxyAdmin"
TRANSPARENT_UPGRADEABLE_PROXY = "TransparentUpgradeableProxy"
UPGRADEABLE_BEACON = "UpgradeableBeacon"
BEACON_PROXY = "BeaconProxy"
DEPLOYMENT_REGISTRY = "DeploymentRegistry"

TEMPLATE_NAMES = (
    PLACEHOLDER,
    PROXY_ADMIN,
    TRANSPARENT_UPGRADEABLE_PROXY,
    UPGRADEABLE_BEACON,
    BEACON_PROXY,
)
