import inspect
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import Union

from web3 import AsyncWeb3

from contract_mock.behavior import BehaviorRegistry
from contract_mock.behavior import Producer
from contract_mock.behavior import settle
from contract_mock.codec import abi_entry_from_types
from contract_mock.codec import function_entries
from contract_mock.codec import FunctionSignature
from contract_mock.codec import load_abi
from contract_mock.codec import SignatureTable
from contract_mock.hook import MockInstance
from contract_mock.hook import MockRegistry
from contract_mock.hook import normalize_address
from contract_mock.utils.default_logger import enable_debug_logging
from contract_mock.utils.default_logger import get_logger
from contract_mock.utils.exceptions import ArityMismatch
from contract_mock.utils.exceptions import InvalidMockSpec
from contract_mock.utils.exceptions import MockException
from contract_mock.utils.exceptions import UnknownFunction
from contract_mock.utils.models.settings_model import MockFunctionSpec
from contract_mock.utils.models.settings_model import MockOptions


logger = get_logger('MockFactory')


class MockedFunctions:
    """
    Behavior registries of a mock, by name or canonical signature.

    Supports both `functions['getUint256']` and `functions.getUint256`.
    """

    def __init__(self, instance: MockInstance):
        self._instance = instance

    def __getitem__(self, name_or_signature: str) -> BehaviorRegistry:
        return self._instance.registry_for(name_or_signature)

    def __getattr__(self, name: str) -> BehaviorRegistry:
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self._instance.registry_for(name)
        except UnknownFunction as e:
            raise AttributeError(name) from e

    def __contains__(self, name_or_signature: str) -> bool:
        return name_or_signature in self._instance.table

    def __iter__(self) -> Iterator[str]:
        return iter(self._instance.table.names())

    def __len__(self) -> int:
        return len(self._instance.table)


class MockControls:
    """Control surface of a mock: per-function behaviors plus the fallback."""

    def __init__(self, instance: MockInstance):
        self.address = instance.address
        self.functions = MockedFunctions(instance)
        self.fallback = instance.fallback


class MockContract:
    """
    Caller-facing mock.

    `functions` is a regular web3 contract binding pointed at the mock address,
    so calls go through the provider and reach the dispatch hook. `mocked`
    configures behaviors; the call log is read through `get_call_count` and
    `get_call_data`.
    """

    def __init__(self, instance: MockInstance, abi: List[Dict[str, Any]], contract: Any = None):
        self._instance = instance
        self.abi = abi
        self.contract = contract
        self.mocked = MockControls(instance)

    @property
    def address(self) -> str:
        return self._instance.address

    @property
    def instance(self) -> MockInstance:
        return self._instance

    @property
    def functions(self):
        if self.contract is None:
            raise MockException(
                request=self.address,
                extra_info='Mock was built without a provider, pass provider=AsyncWeb3(...) to call it through web3',
            )
        return self.contract.functions

    def get_call_count(self, name: str) -> int:
        return self._instance.registry_for(name).call_count

    def get_call_data(self, name: str, index: int) -> Tuple[Any, ...]:
        """
        Decoded inputs of the `index`-th call to `name`.

        Raises:
            CallIndexOutOfRange: If fewer than `index + 1` calls were recorded.
        """
        return self._instance.registry_for(name).get_call_data(index)

    def set_return_values(self, name: str, values: Any):
        """
        Overwrite what `name` returns with the full list of its outputs, or a
        sync or async function of the inputs returning that list, the same
        shape as `returnValues` in `from_spec_list`. A value that is not a list
        or tuple is taken as the only output.

        Raises:
            InvalidMockSpec: If a literal list does not match the output count.
        """
        registry = self._instance.registry_for(name)
        signature = registry.signature
        producer = _output_list_producer(
            signature.name,
            values,
            len(signature.outputs),
            request={'function': signature.signature, 'returnValues': repr(values)},
        )
        registry.set_return(producer)

    def reset(self):
        """Reset every function and the fallback. Call history is kept."""
        for registry in self._instance.registries.values():
            registry.reset()
        self._instance.fallback.reset()

    def encode_calldata(self, name: str, *args: Any) -> bytes:
        return self._instance.table.lookup(name).encode_calldata(args)

    def __repr__(self):
        return f'MockContract({self.address}, functions={self._instance.table.names()})'


class MockFactory:
    """
    Builds MockContracts and registers them with a MockRegistry.

    Args:
        registry (MockRegistry): Lookup table shared with the dispatch hook.
        w3 (AsyncWeb3, optional): Default provider context for contract bindings.
        debug_mode (bool, optional): Send this library's DEBUG/TRACE logs to stdout.
    """

    def __init__(self, registry: MockRegistry, w3: Optional[AsyncWeb3] = None, debug_mode: bool = False):
        self._registry = registry
        self._w3 = w3
        self._debug_mode = debug_mode
        self._logger = logger

        if self._debug_mode:
            enable_debug_logging()

    def from_abi(
        self,
        abi: Union[str, List[Dict[str, Any]], Dict[str, Any]],
        options: Optional[MockOptions] = None,
        **kwargs,
    ) -> MockContract:
        """
        Mock a contract given its ABI (list, JSON text, or artifact with an 'abi' key).
        """
        return self._build(load_abi(abi), self._options(options, kwargs))

    def from_contract(self, contract: Any, options: Optional[MockOptions] = None, **kwargs) -> MockContract:
        """
        Mock a contract with the same ABI as an existing web3 contract.
        The contract's own w3 is used unless a provider option is given.
        """
        return self._from_abi_holder(contract, self._options(options, kwargs))

    def from_factory(self, factory: Any, options: Optional[MockOptions] = None, **kwargs) -> MockContract:
        """
        Mock a contract from a not yet deployed contract class (`w3.eth.contract(abi=...)`).
        """
        return self._from_abi_holder(factory, self._options(options, kwargs))

    def from_spec_list(
        self,
        specs: Sequence[Union[MockFunctionSpec, Dict[str, Any]]],
        options: Optional[MockOptions] = None,
        **kwargs,
    ) -> MockContract:
        """
        Mock functions that need no ABI: each spec names the function, its
        input and output types and what it returns.

        Raises:
            InvalidMockSpec: If literal return values do not match the output
                types in number.
        """
        specs = [s if isinstance(s, MockFunctionSpec) else MockFunctionSpec(**s) for s in specs]
        abi = []
        producers = []
        for spec in specs:
            entry = abi_entry_from_types(spec.function_name, spec.input_types, spec.output_types)
            abi.append(entry)
            producers.append(_spec_producer(spec))

        mock = self._build(abi, self._options(options, kwargs))
        for entry, producer in zip(abi, producers):
            if producer is not None:
                selector = FunctionSignature.from_abi_entry(entry).selector
                mock.instance.registries[selector].set_return(producer)
        return mock

    def _from_abi_holder(self, holder: Any, options: MockOptions) -> MockContract:
        abi = getattr(holder, 'abi', None)
        if abi is None:
            raise InvalidMockSpec(request=repr(holder), extra_info='Object does not expose an ABI')
        if options.provider is None and isinstance(getattr(holder, 'w3', None), AsyncWeb3):
            options = options.model_copy(update={'provider': holder.w3})
        return self._build(load_abi(abi), options)

    def _options(self, options: Optional[MockOptions], overrides: Dict[str, Any]) -> MockOptions:
        if options is None:
            return MockOptions(**overrides)
        if overrides:
            return options.model_copy(update=overrides)
        return options

    def _build(self, abi: List[Dict[str, Any]], options: MockOptions) -> MockContract:
        table = SignatureTable([FunctionSignature.from_abi_entry(e) for e in function_entries(abi)])

        if options.address is not None:
            address = normalize_address(options.address)
            if address is None:
                raise InvalidMockSpec(request=options.address, extra_info='Mock address is not a valid address')
        else:
            address = self._registry.allocate_address()

        instance = MockInstance(
            address=address,
            table=table,
            registries={sig.selector: BehaviorRegistry(sig) for sig in table},
            fallback=BehaviorRegistry(),
        )
        self._registry.register(instance)

        w3 = options.provider or self._w3
        contract = w3.eth.contract(address=address, abi=abi) if w3 is not None else None
        self._logger.debug('Built mock at {} for functions {}', address, table.names())
        return MockContract(instance, abi, contract)


def _spec_producer(spec: MockFunctionSpec) -> Optional[Producer]:
    """
    Spec-list return values are the full list of outputs; adapt them to the
    value shape the behavior registry works with.
    """
    if spec.return_values is None:
        return None
    return _output_list_producer(
        spec.function_name,
        spec.return_values,
        len(spec.output_types),
        request=spec.model_dump(by_alias=True),
    )


def _output_list_producer(name: str, values: Any, arity: int, request: Any) -> Producer:
    """
    Producer for a full list of outputs given as a literal, or as a sync or
    async function of the inputs.

    Raises:
        InvalidMockSpec: If a literal list does not hold `arity` values.
    """
    if inspect.iscoroutinefunction(values):
        async def produce_async(*args):
            return _unwrap(name, await settle(values(*args)), arity)
        return Producer.async_(produce_async)

    if callable(values):
        def produce(*args):
            result = values(*args)
            if inspect.isawaitable(result):
                return _unwrap_awaitable(name, result, arity)
            return _unwrap(name, result, arity)
        return Producer.sync(produce)

    values = list(values) if isinstance(values, (list, tuple)) else [values]
    if len(values) != arity:
        raise InvalidMockSpec(
            request=request,
            extra_info=(
                f'Provided mock function {name} is invalid: '
                f'{arity} output types but {len(values)} return values'
            ),
        )
    return Producer.literal(_unwrap(name, values, arity))


async def _unwrap_awaitable(name: str, awaitable, arity: int):
    return _unwrap(name, await settle(awaitable), arity)


def _unwrap(name: str, values: Any, arity: int) -> Any:
    if values is None:
        values = []
    elif not isinstance(values, (list, tuple)):
        values = [values]
    if len(values) != arity:
        raise ArityMismatch(
            request=repr(values),
            extra_info=f'{name} declares {arity} outputs, producer supplied {len(values)}',
        )
    if arity == 1:
        return values[0]
    return tuple(values)
