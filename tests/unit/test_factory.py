"""
Unit tests for the mock factory.

These tests build mocks from every supported input form and check the
caller-facing surface: address handling, behavior configuration through
`mocked`, call counting and call data inspection.
"""
import json

import eth_abi
import pytest

from contract_mock.factory import MockContract
from contract_mock.hook import Returned
from contract_mock.hook import Reverted
from contract_mock.utils.exceptions import CallIndexOutOfRange
from contract_mock.utils.exceptions import InvalidMockSpec
from contract_mock.utils.exceptions import MockException
from contract_mock.utils.exceptions import UnknownFunction
from contract_mock.utils.models.settings_model import MockFunctionSpec
from contract_mock.utils.models.settings_model import MockOptions
from tests.conftest import NON_ZERO_ADDRESS


class TestMockConstruction:
    """Test cases for the factory entry points."""

    @pytest.mark.unit
    def test_from_abi_list(self, offline_factory, basic_abi, mock_registry):
        """A plain ABI list builds a registered mock with one registry per function."""
        mock = offline_factory.from_abi(basic_abi)

        assert isinstance(mock, MockContract)
        assert mock.address in mock_registry
        assert len(mock.mocked.functions) == 17
        assert "getUint256" in mock.mocked.functions
        assert "Ping" not in mock.mocked.functions

    @pytest.mark.unit
    def test_from_abi_json_and_artifact(self, offline_factory, basic_abi):
        """JSON text and compiler artifacts are accepted too."""
        from_json = offline_factory.from_abi(json.dumps(basic_abi))
        from_artifact = offline_factory.from_abi({"contractName": "Basic", "abi": basic_abi})

        assert set(from_json.mocked.functions) == set(from_artifact.mocked.functions)
        assert from_json.address != from_artifact.address

    @pytest.mark.unit
    def test_explicit_address(self, offline_factory, basic_abi, mock_registry):
        """The address option overrides allocation and is checksummed."""
        mock = offline_factory.from_abi(basic_abi, options=MockOptions(address=NON_ZERO_ADDRESS))

        assert mock.address == "0x1111111111111111111111111111111111111111"
        assert mock_registry.get(NON_ZERO_ADDRESS) is mock.instance

    @pytest.mark.unit
    def test_invalid_address(self, offline_factory, basic_abi):
        """Addresses that are not 20-byte hex are rejected."""
        with pytest.raises(InvalidMockSpec):
            offline_factory.from_abi(basic_abi, address="0x1234")

    @pytest.mark.unit
    def test_from_factory(self, factory, w3, basic_abi, mock_registry):
        """Undeployed contract classes are mocked with their ABI and w3."""
        contract_class = w3.eth.contract(abi=basic_abi)

        mock = factory.from_factory(contract_class)

        assert mock.address in mock_registry
        assert mock.functions.getUint256 is not None
        assert mock.contract.w3 is w3

    @pytest.mark.unit
    def test_from_contract(self, factory, w3, caller_abi):
        """Existing contract bindings lend their ABI to a new mock address."""
        real = w3.eth.contract(address=NON_ZERO_ADDRESS, abi=caller_abi)

        mock = factory.from_contract(real)

        assert mock.address != real.address
        assert mock.contract.address == mock.address
        assert "firstFunction" in mock.mocked.functions

    @pytest.mark.unit
    def test_from_contract_without_abi(self, factory):
        """Objects without an ABI cannot be mocked."""
        with pytest.raises(InvalidMockSpec):
            factory.from_contract(object())

    @pytest.mark.unit
    def test_functions_without_provider(self, offline_factory, basic_abi):
        """Calling through web3 needs a provider."""
        mock = offline_factory.from_abi(basic_abi)

        assert mock.contract is None
        with pytest.raises(MockException):
            mock.functions

    @pytest.mark.unit
    def test_mocked_functions_access(self, offline_factory, basic_abi):
        """Registries are reachable by attribute, name and signature."""
        mock = offline_factory.from_abi(basic_abi)

        registry = mock.mocked.functions.getInputtedUint256
        assert mock.mocked.functions["getInputtedUint256"] is registry
        assert mock.mocked.functions["getInputtedUint256(uint256)"] is registry
        with pytest.raises(AttributeError):
            mock.mocked.functions.doesNotExist
        with pytest.raises(UnknownFunction):
            mock.mocked.functions["doesNotExist"]


class TestSpecList:
    """Test cases for mocks built from function specs."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_literal_values(self, offline_factory, dispatch_hook):
        """Literal return lists map one value per output type."""
        mock = offline_factory.from_spec_list([
            {"functionName": "getPair", "outputTypes": ["uint256", "string memory"], "returnValues": [7, "seven"]},
            MockFunctionSpec(function_name="getOne", output_types=["bool"], return_values=[True]),
        ])

        pair = await dispatch_hook.intercept(mock.address, mock.encode_calldata("getPair"))
        one = await dispatch_hook.intercept(mock.address, mock.encode_calldata("getOne"))

        assert pair == Returned(data=eth_abi.encode(["uint256", "string"], [7, "seven"]))
        assert one == Returned(data=eth_abi.encode(["bool"], [True]))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sync_and_async_producers(self, offline_factory, dispatch_hook):
        """Producers receive the inputs and return the full output list."""
        async def double(value):
            return [value * 2]

        mock = offline_factory.from_spec_list([
            {"functionName": "add", "inputTypes": ["uint256", "uint256"], "outputTypes": ["uint256"],
             "returnValues": lambda a, b: [a + b]},
            {"functionName": "double", "inputTypes": ["uint256"], "outputTypes": ["uint256"],
             "returnValues": double},
        ])

        added = await dispatch_hook.intercept(mock.address, mock.encode_calldata("add", 2, 3))
        doubled = await dispatch_hook.intercept(mock.address, mock.encode_calldata("double", 21))

        assert added == Returned(data=eth_abi.encode(["uint256"], [5]))
        assert doubled == Returned(data=eth_abi.encode(["uint256"], [42]))
        assert mock.get_call_data("add", 0) == (2, 3)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_without_return_values(self, offline_factory, dispatch_hook):
        """Specs without values return zero values."""
        mock = offline_factory.from_spec_list([{"functionName": "getString", "outputTypes": ["string"]}])

        result = await dispatch_hook.intercept(mock.address, mock.encode_calldata("getString"))

        assert result == Returned(data=eth_abi.encode(["string"], [""]))

    @pytest.mark.unit
    def test_value_count_mismatch(self, offline_factory, mock_registry):
        """Literal lists must match the output types in length; nothing is registered."""
        with pytest.raises(InvalidMockSpec):
            offline_factory.from_spec_list([
                {"functionName": "getPair", "outputTypes": ["uint256", "uint256"], "returnValues": [1]},
            ])

        assert len(mock_registry) == 0

    @pytest.mark.unit
    def test_invalid_type(self, offline_factory):
        """Unparseable types are rejected at construction."""
        with pytest.raises(InvalidMockSpec):
            offline_factory.from_spec_list([{"functionName": "bad", "outputTypes": ["uint7"]}])


class TestCallInspection:
    """Test cases for call counting, call data and behavior control."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_call_count_and_data(self, offline_factory, dispatch_hook, caller_abi):
        """Every call is counted and its decoded inputs are kept in order."""
        mock = offline_factory.from_abi(caller_abi)
        addresses = ["0x" + f"{i:040x}" for i in range(1, 11)]

        for address in addresses:
            await dispatch_hook.intercept(mock.address, mock.encode_calldata("firstFunction", address))

        assert mock.get_call_count("firstFunction") == 10
        assert mock.get_call_count("secondFunction") == 0
        for i, address in enumerate(addresses):
            assert mock.get_call_data("firstFunction", i)[0].lower() == address
        with pytest.raises(CallIndexOutOfRange):
            mock.get_call_data("firstFunction", 10)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_multiple_inputs_recorded(self, offline_factory, dispatch_hook, caller_abi):
        """Call data holds every decoded argument."""
        mock = offline_factory.from_abi(caller_abi)

        await dispatch_hook.intercept(mock.address, mock.encode_calldata("secondFunction", 7, "seven"))

        assert mock.get_call_data("secondFunction", 0) == (7, "seven")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_overloads(self, offline_factory, dispatch_hook, caller_abi):
        """Overloads are configured and inspected by signature."""
        mock = offline_factory.from_abi(caller_abi)
        mock.set_return_values("overloaded(uint256)", 1)
        mock.set_return_values("overloaded(address)", 2)

        by_uint = await dispatch_hook.intercept(mock.address, mock.encode_calldata("overloaded(uint256)", 5))
        by_address = await dispatch_hook.intercept(
            mock.address, mock.encode_calldata("overloaded(address)", NON_ZERO_ADDRESS),
        )

        assert by_uint == Returned(data=eth_abi.encode(["uint256"], [1]))
        assert by_address == Returned(data=eth_abi.encode(["uint256"], [2]))
        assert mock.get_call_count("overloaded(uint256)") == 1
        with pytest.raises(UnknownFunction):
            mock.get_call_count("overloaded")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reset_keeps_history(self, offline_factory, dispatch_hook, basic_abi):
        """Resetting a mock restores defaults everywhere but keeps its call log."""
        mock = offline_factory.from_abi(basic_abi)
        calldata = mock.encode_calldata("getUint256")

        assert await dispatch_hook.intercept(mock.address, calldata) == Returned(data=b"\x00" * 32)

        mock.mocked.functions.getUint256.will.return_.with_(1234)
        assert await dispatch_hook.intercept(mock.address, calldata) == Returned(
            data=eth_abi.encode(["uint256"], [1234]),
        )

        mock.reset()
        assert await dispatch_hook.intercept(mock.address, calldata) == Returned(data=b"\x00" * 32)

        mock.mocked.functions.getUint256.will.revert.with_("boom")
        assert await dispatch_hook.intercept(mock.address, calldata) == Reverted(reason="boom")

        mock.reset()
        assert await dispatch_hook.intercept(mock.address, calldata) == Returned(data=b"\x00" * 32)
        assert mock.get_call_count("getUint256") == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_set_return_values_overwrites_spec_values(self, offline_factory, dispatch_hook):
        """Return values are the full output list, like spec-list values."""
        mock = offline_factory.from_spec_list([
            {"functionName": "firstFunction", "outputTypes": ["uint256"], "returnValues": [1234]},
        ])
        calldata = mock.encode_calldata("firstFunction")

        assert await dispatch_hook.intercept(mock.address, calldata) == Returned(
            data=eth_abi.encode(["uint256"], [1234]),
        )

        mock.set_return_values("firstFunction", [5678])

        assert await dispatch_hook.intercept(mock.address, calldata) == Returned(
            data=eth_abi.encode(["uint256"], [5678]),
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_set_return_values_from_functions(self, offline_factory, dispatch_hook, basic_abi):
        """Sync and async functions return the output list too."""
        async def as_pair(value):
            return [value, "async"]

        mock = offline_factory.from_abi(basic_abi)
        mock.set_return_values("getInputtedUint256", lambda value: [value + 1])
        mock.set_return_values("getMultiple", lambda: (7, "seven"))

        plus_one = await dispatch_hook.intercept(mock.address, mock.encode_calldata("getInputtedUint256", 1))
        multiple = await dispatch_hook.intercept(mock.address, mock.encode_calldata("getMultiple"))

        assert plus_one == Returned(data=eth_abi.encode(["uint256"], [2]))
        assert multiple == Returned(data=eth_abi.encode(["uint256", "string"], [7, "seven"]))

        spec_mock = offline_factory.from_spec_list([
            {"functionName": "pair", "inputTypes": ["uint256"], "outputTypes": ["uint256", "string"]},
        ])
        spec_mock.set_return_values("pair", as_pair)

        pair = await dispatch_hook.intercept(spec_mock.address, spec_mock.encode_calldata("pair", 3))
        assert pair == Returned(data=eth_abi.encode(["uint256", "string"], [3, "async"]))

    @pytest.mark.unit
    def test_set_return_values_wrong_length(self, offline_factory, basic_abi):
        """Literal lists must hold one value per output."""
        mock = offline_factory.from_abi(basic_abi)

        with pytest.raises(InvalidMockSpec):
            mock.set_return_values("getMultiple", [1])
        with pytest.raises(InvalidMockSpec):
            mock.set_return_values("getUint256", [1, 2])

        assert mock.mocked.functions.getMultiple.configured is False

    @pytest.mark.unit
    def test_repr(self, offline_factory, caller_abi):
        mock = offline_factory.from_abi(caller_abi)

        assert mock.address in repr(mock)
