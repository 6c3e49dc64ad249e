"""
Call dispatch hook.

The MockRegistry maps mock addresses to MockInstances. The DispatchHook is the
single entry point the host execution pipeline calls before running real code:
calls to unregistered addresses come back as NOT_INTERCEPTED, everything else
is answered from the matching BehaviorRegistry.
"""
import secrets
import threading
from dataclasses import dataclass
from typing import Any
from typing import Dict
from typing import Optional
from typing import Set
from typing import Union

from eth_utils import is_hex_address
from eth_utils import to_bytes
from eth_utils import to_checksum_address
from eth_utils import to_hex
from hexbytes import HexBytes

from contract_mock.behavior import BehaviorRegistry
from contract_mock.behavior import Mode
from contract_mock.behavior import NO_DATA
from contract_mock.behavior import PendingOutcome
from contract_mock.codec import encode_revert_reason
from contract_mock.codec import FunctionSignature
from contract_mock.codec import SignatureTable
from contract_mock.utils.default_logger import get_logger
from contract_mock.utils.exceptions import EncodeError
from contract_mock.utils.exceptions import InvalidMockSpec
from contract_mock.utils.exceptions import UnknownSelector


logger = get_logger('DispatchHook')


@dataclass(frozen=True)
class Returned:
    data: bytes


@dataclass(frozen=True)
class Reverted:
    """A revert carrying a string reason, raw bytes, or nothing."""

    reason: Union[str, bytes] = ''

    @property
    def message(self) -> str:
        if isinstance(self.reason, str) and self.reason:
            return f'execution reverted: {self.reason}'
        return 'execution reverted'

    def to_revert_data(self) -> bytes:
        if isinstance(self.reason, str):
            return encode_revert_reason(self.reason) if self.reason else b''
        return bytes(self.reason)


class _NotIntercepted:
    def __repr__(self):
        return 'NOT_INTERCEPTED'


NOT_INTERCEPTED = _NotIntercepted()

InterceptResult = Union[Returned, Reverted, _NotIntercepted]


@dataclass
class MockInstance:
    """
    Everything the hook needs to answer calls to one mock address.
    """

    address: str
    table: SignatureTable
    registries: Dict[bytes, BehaviorRegistry]
    fallback: BehaviorRegistry

    def registry_for(self, name_or_signature: str) -> BehaviorRegistry:
        return self.registries[self.table.lookup(name_or_signature).selector]


def normalize_address(address: Any) -> Optional[str]:
    """Checksummed form of `address`, or None if it is not an address."""
    if isinstance(address, (bytes, bytearray)) and len(address) == 20:
        return to_checksum_address(address)
    if isinstance(address, str) and is_hex_address(address):
        return to_checksum_address(address)
    return None


class MockRegistry:
    """
    Address -> MockInstance lookup table.

    Create one per test process (or per test, for isolation) and hand it to the
    factory and the hook. Instances stay registered until `unregister` or
    `clear` is called.
    """

    def __init__(self):
        self._mocks: Dict[str, MockInstance] = {}
        # allocated but not yet registered
        self._reserved: Set[str] = set()
        self._lock = threading.Lock()

    def register(self, instance: MockInstance):
        address = normalize_address(instance.address)
        if address is None:
            raise InvalidMockSpec(request=instance.address, extra_info='Mock address is not a valid address')
        with self._lock:
            if address in self._mocks:
                raise InvalidMockSpec(request=address, extra_info=f'A mock is already registered at {address}')
            self._mocks[address] = instance
            self._reserved.discard(address)
        logger.debug('Registered mock at {} with {} functions', address, len(instance.table))

    def unregister(self, address: str) -> Optional[MockInstance]:
        with self._lock:
            instance = self._mocks.pop(normalize_address(address), None)
        if instance is not None:
            logger.debug('Unregistered mock at {}', instance.address)
        return instance

    def get(self, address: Any) -> Optional[MockInstance]:
        return self._mocks.get(normalize_address(address))

    def allocate_address(self) -> str:
        """
        A random address no other mock uses. It stays reserved until it is
        registered, so concurrent allocations never hand out the same one.
        """
        with self._lock:
            while True:
                address = to_checksum_address(secrets.token_bytes(20))
                if address not in self._mocks and address not in self._reserved:
                    self._reserved.add(address)
                    return address

    def clear(self):
        with self._lock:
            self._mocks.clear()
            self._reserved.clear()

    def __contains__(self, address: Any) -> bool:
        return normalize_address(address) in self._mocks

    def __len__(self) -> int:
        return len(self._mocks)


class DispatchHook:
    """
    Answers calls directed at mock addresses.
    """

    def __init__(self, registry: MockRegistry):
        self._registry = registry

    @property
    def registry(self) -> MockRegistry:
        return self._registry

    async def intercept(self, address: Any, calldata: Union[bytes, str, None]) -> InterceptResult:
        """
        Route a call to a mock, if `address` belongs to one.

        Args:
            address: Destination of the call.
            calldata: Selector followed by ABI-encoded arguments, as bytes or hex.

        Returns:
            Returned, Reverted or NOT_INTERCEPTED.

        Raises:
            UnknownSelector: The selector matches no function and the fallback
                was never configured.
            DecodeError: The calldata does not match the function's inputs.
            EncodeError, ArityMismatch: The configured value does not fit the
                function's outputs.
        """
        instance = self._registry.get(address)
        if instance is None:
            return NOT_INTERCEPTED

        data = to_bytes(hexstr=calldata) if isinstance(calldata, str) else bytes(calldata or b'')
        signature: Optional[FunctionSignature] = None
        if len(data) < 4:
            registry = instance.fallback
            inputs = (data,)
        else:
            signature = instance.table.get(data[:4])
            if signature is None:
                if not instance.fallback.configured:
                    raise UnknownSelector(
                        request={'address': instance.address, 'calldata': to_hex(data)},
                        extra_info=f'No function with selector {to_hex(data[:4])} and no fallback configured',
                    )
                registry = instance.fallback
                inputs = (data,)
            else:
                registry = instance.registries[signature.selector]
                inputs = signature.decode_inputs(data)

        logger.trace('Intercepted call to {} -> {} with inputs {}', instance.address, registry.name, inputs)
        outcome = registry.resolve(inputs)
        if isinstance(outcome, PendingOutcome):
            outcome = await outcome.wait()

        if outcome.mode == Mode.REVERT:
            return Reverted(reason=_revert_reason(outcome.value))
        return Returned(data=_return_data(signature, outcome.value))


def _revert_reason(value: Any) -> Union[str, bytes]:
    if value is None:
        return ''
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return str(value)


def _return_data(signature: Optional[FunctionSignature], value: Any) -> bytes:
    if value is NO_DATA:
        return b''
    if signature is not None:
        return signature.encode_outputs(signature.outputs_from_value(value))
    # fallback: the configured value is the raw return data
    if value is None:
        return b''
    if isinstance(value, (bytes, bytearray, str)):
        try:
            return bytes(HexBytes(value))
        except ValueError as e:
            raise EncodeError(
                request=value,
                underlying_exception=e,
                extra_info='Fallback return data must be bytes or a hex string',
            )
    raise EncodeError(
        request=repr(value),
        extra_info=f'Fallback return data must be bytes or a hex string, got {type(value).__name__}',
    )
