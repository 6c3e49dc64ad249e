"""
Pytest configuration and shared fixtures for the contract mock test suite.
This module provides the test ABIs, a fresh registry/hook/provider stack per
test, and mock transports for the fall-through backend.
"""
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from web3 import AsyncWeb3

from contract_mock.factory import MockFactory
from contract_mock.hook import DispatchHook, MockRegistry
from contract_mock.provider import MockingProvider
from contract_mock.utils.models.settings_model import (
    ConnectionLimits,
    MockProviderConfig,
    RPCConfigBase,
    RPCNodeConfig,
)


TEST_RPC_URL = "https://eth.llamarpc.com"
NON_ZERO_ADDRESS = "0x" + "11" * 20
BYTES32_VALUE = "0x" + "1234" * 16


def _fn(name, inputs=(), outputs=(), mutability="view") -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": list(inputs),
        "outputs": list(outputs),
        "stateMutability": mutability,
    }


def _param(type_, name="", components=None) -> Dict[str, Any]:
    param = {"name": name, "type": type_}
    if components is not None:
        param["components"] = components
    return param


FIXED_STRUCT = [
    _param("uint256", "valUint256"),
    _param("bool", "valBoolean"),
    _param("bytes32", "valBytes32"),
]
DYNAMIC_STRUCT = [
    _param("bytes", "valBytes"),
    _param("string", "valString"),
]
MIXED_STRUCT = [
    _param("bytes", "valBytes"),
    _param("uint256", "valUint256"),
    _param("string", "valString"),
]

BASIC_RETURN_ABI: List[Dict[str, Any]] = [
    _fn("empty", mutability="nonpayable"),
    _fn("getBoolean", outputs=[_param("bool")]),
    _fn("getUint256", outputs=[_param("uint256")]),
    _fn("getBytes32", outputs=[_param("bytes32")]),
    _fn("getAddress", outputs=[_param("address")]),
    _fn("getBytes", outputs=[_param("bytes")]),
    _fn("getString", outputs=[_param("string")]),
    _fn("getInputtedBoolean", inputs=[_param("bool", "_val")], outputs=[_param("bool")]),
    _fn("getInputtedUint256", inputs=[_param("uint256", "_val")], outputs=[_param("uint256")]),
    _fn("getInputtedBytes32", inputs=[_param("bytes32", "_val")], outputs=[_param("bytes32")]),
    _fn("getStructFixedSize", outputs=[_param("tuple", "", FIXED_STRUCT)]),
    _fn("getStructDynamicSize", outputs=[_param("tuple", "", DYNAMIC_STRUCT)]),
    _fn("getStructMixedSize", outputs=[_param("tuple", "", MIXED_STRUCT)]),
    _fn(
        "getStructNested",
        outputs=[
            _param(
                "tuple",
                "",
                [
                    _param("tuple", "valStruct", MIXED_STRUCT),
                    _param("tuple[]", "valStructArray", FIXED_STRUCT),
                    _param("uint256[2]", "valPair"),
                ],
            )
        ],
    ),
    _fn("getArrayUint256", outputs=[_param("uint256[]")]),
    _fn("getMultiple", outputs=[_param("uint256", "amount"), _param("string", "label")]),
    _fn("setStruct", inputs=[_param("tuple", "_val", MIXED_STRUCT), _param("address[]", "_who")]),
    {
        "type": "event",
        "name": "Ping",
        "anonymous": False,
        "inputs": [{"indexed": False, "name": "value", "type": "uint256"}],
    },
]

CALLER_ABI: List[Dict[str, Any]] = [
    _fn("firstFunction", inputs=[_param("address", "_addr")], mutability="nonpayable"),
    _fn("secondFunction", inputs=[_param("uint256", "_a"), _param("string", "_b")], mutability="nonpayable"),
    _fn("overloaded", inputs=[_param("uint256", "_a")], outputs=[_param("uint256")]),
    _fn("overloaded", inputs=[_param("address", "_a")], outputs=[_param("uint256")]),
]


@pytest.fixture
def basic_abi() -> List[Dict[str, Any]]:
    return BASIC_RETURN_ABI


@pytest.fixture
def caller_abi() -> List[Dict[str, Any]]:
    return CALLER_ABI


@pytest.fixture
def mock_registry() -> MockRegistry:
    """A fresh address table per test, so mocks never leak between tests."""
    return MockRegistry()


@pytest.fixture
def dispatch_hook(mock_registry) -> DispatchHook:
    return DispatchHook(mock_registry)


@pytest.fixture
def mocking_provider(dispatch_hook) -> MockingProvider:
    return MockingProvider(dispatch_hook)


@pytest.fixture
def w3(mocking_provider) -> AsyncWeb3:
    return AsyncWeb3(mocking_provider)


@pytest.fixture
def factory(mock_registry, w3) -> MockFactory:
    return MockFactory(mock_registry, w3)


@pytest.fixture
def offline_factory(mock_registry) -> MockFactory:
    """Factory without a provider: mocks are driven through the hook directly."""
    return MockFactory(mock_registry)


@pytest.fixture
def basic_mock(factory, basic_abi):
    return factory.from_abi(basic_abi)


@pytest.fixture
def backend_config() -> MockProviderConfig:
    return MockProviderConfig(
        chain_id=1,
        backend=RPCConfigBase(
            full_nodes=[RPCNodeConfig(url=TEST_RPC_URL), RPCNodeConfig(url=TEST_RPC_URL + "/2")],
            retry=2,
            request_time_out=10,
            connection_limits=ConnectionLimits(
                max_connections=10,
                max_keepalive_connections=5,
                keepalive_expiry=300,
            ),
        ),
    )


@pytest.fixture
def mock_async_client() -> AsyncMock:
    """Fixture providing a simple mock HTTP client."""
    mock = AsyncMock(spec=httpx.AsyncClient)

    class MockResponse:
        def __init__(self):
            self.status_code = 200
            self._json_data = {}
            self.text = ""

        def json(self):
            """Return json data to match httpx behavior."""
            return self._json_data

        def set_json_data(self, data):
            self._json_data = data

    mock.post = AsyncMock(return_value=MockResponse())
    return mock


@pytest.fixture
def mock_backend_provider() -> MagicMock:
    """An async provider standing in for a real node."""
    backend = MagicMock()
    backend.make_request = AsyncMock(return_value={"jsonrpc": "2.0", "id": 1, "result": "0x"})
    backend.is_connected = AsyncMock(return_value=True)
    return backend
