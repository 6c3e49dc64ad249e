"""
ABI type and codec adapter.

Wraps an ABI description into a table of FunctionSignature objects, each able
to encode calldata, decode inputs, encode outputs and synthesize the
zero values a freshly deployed contract would hand back. The byte level work
is delegated to eth_abi; this module only walks the type tree.
"""
import json
import re
from dataclasses import dataclass
from dataclasses import field
from decimal import Decimal
from enum import Enum
from functools import cached_property
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import Union

import eth_abi
from eth_abi.exceptions import DecodingError
from eth_abi.exceptions import EncodingError
from eth_abi.grammar import normalize
from eth_abi.grammar import parse
from eth_abi.grammar import TupleType
from eth_utils import is_hex_address
from eth_utils import keccak
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from contract_mock.utils.default_logger import get_logger
from contract_mock.utils.exceptions import ArityMismatch
from contract_mock.utils.exceptions import DecodeError
from contract_mock.utils.exceptions import EncodeError
from contract_mock.utils.exceptions import InvalidMockSpec
from contract_mock.utils.exceptions import UnknownFunction


logger = get_logger('Codec')

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'
# Error(string)
REVERT_REASON_SELECTOR = bytes.fromhex('08c379a0')

_ARRAY_DIM = re.compile(r'\[(\d*)\]')
_DATA_LOCATIONS = ('memory', 'calldata', 'storage')


class TypeKind(str, Enum):
    BOOL = 'bool'
    INT = 'int'
    UINT = 'uint'
    ADDRESS = 'address'
    FIXED_BYTES = 'fixed_bytes'
    FIXED_POINT = 'fixed_point'
    BYTES = 'bytes'
    STRING = 'string'
    TUPLE = 'tuple'
    FIXED_ARRAY = 'fixed_array'
    DYNAMIC_ARRAY = 'dynamic_array'


@dataclass(frozen=True)
class TypeDescriptor:
    """
    Node of an ABI type tree.

    Scalars carry their canonical type string in `abi_type`. Fixed arrays carry
    their length in `length`, both array kinds their element in `item`, and
    tuples their ordered `components` with the matching `names` (empty strings
    for unnamed fields).
    """

    kind: TypeKind
    abi_type: str = ''
    length: Optional[int] = None
    item: Optional['TypeDescriptor'] = None
    components: Tuple['TypeDescriptor', ...] = ()
    names: Tuple[str, ...] = ()

    @classmethod
    def from_type_string(cls, type_str: str) -> 'TypeDescriptor':
        """
        Build a descriptor from a type string such as 'uint256',
        '(address,bytes32)[]' or 'string memory'.
        """
        cleaned = type_str.strip()
        for location in _DATA_LOCATIONS:
            if cleaned.endswith(' ' + location):
                cleaned = cleaned[:-len(location)].strip()
        try:
            abi_type = parse(normalize(cleaned))
            abi_type.validate()
        except Exception as e:
            raise InvalidMockSpec(
                request=type_str,
                underlying_exception=e,
                extra_info=f'Unparseable ABI type: {type_str}',
            )
        return cls._from_parsed(abi_type)

    @classmethod
    def _from_parsed(cls, abi_type) -> 'TypeDescriptor':
        if abi_type.is_array:
            item = cls._from_parsed(abi_type.item_type)
            dim = abi_type.arrlist[-1]
            if dim:
                return cls(kind=TypeKind.FIXED_ARRAY, length=dim[0], item=item)
            return cls(kind=TypeKind.DYNAMIC_ARRAY, item=item)

        if isinstance(abi_type, TupleType):
            components = tuple(cls._from_parsed(c) for c in abi_type.components)
            return cls(kind=TypeKind.TUPLE, components=components, names=('',) * len(components))

        base, sub = abi_type.base, abi_type.sub
        canonical = abi_type.to_type_str()
        if base == 'bool':
            return cls(kind=TypeKind.BOOL, abi_type=canonical)
        if base == 'uint':
            return cls(kind=TypeKind.UINT, abi_type=canonical)
        if base == 'int':
            return cls(kind=TypeKind.INT, abi_type=canonical)
        if base == 'address':
            return cls(kind=TypeKind.ADDRESS, abi_type=canonical)
        if base == 'string':
            return cls(kind=TypeKind.STRING, abi_type=canonical)
        if base == 'bytes':
            if sub is None:
                return cls(kind=TypeKind.BYTES, abi_type=canonical)
            return cls(kind=TypeKind.FIXED_BYTES, abi_type=canonical, length=sub)
        if base in ('fixed', 'ufixed'):
            return cls(kind=TypeKind.FIXED_POINT, abi_type=canonical)
        raise InvalidMockSpec(request=canonical, extra_info=f'Unsupported ABI type: {canonical}')

    @classmethod
    def from_abi_param(cls, param: Dict[str, Any]) -> 'TypeDescriptor':
        """
        Build a descriptor from an ABI JSON parameter, keeping struct field names.
        """
        type_str = param['type']
        if not type_str.startswith('tuple'):
            return cls.from_type_string(type_str)

        components = tuple(cls.from_abi_param(c) for c in param.get('components', []))
        names = tuple(c.get('name', '') for c in param.get('components', []))
        descriptor = cls(kind=TypeKind.TUPLE, components=components, names=names)
        for dim in _ARRAY_DIM.findall(type_str[len('tuple'):]):
            if dim:
                descriptor = cls(kind=TypeKind.FIXED_ARRAY, length=int(dim), item=descriptor)
            else:
                descriptor = cls(kind=TypeKind.DYNAMIC_ARRAY, item=descriptor)
        return descriptor

    @cached_property
    def canonical(self) -> str:
        if self.kind == TypeKind.TUPLE:
            return '({})'.format(','.join(c.canonical for c in self.components))
        if self.kind == TypeKind.FIXED_ARRAY:
            return f'{self.item.canonical}[{self.length}]'
        if self.kind == TypeKind.DYNAMIC_ARRAY:
            return f'{self.item.canonical}[]'
        return self.abi_type

    @cached_property
    def is_dynamic(self) -> bool:
        if self.kind in (TypeKind.BYTES, TypeKind.STRING, TypeKind.DYNAMIC_ARRAY):
            return True
        if self.kind == TypeKind.FIXED_ARRAY:
            return self.item.is_dynamic
        if self.kind == TypeKind.TUPLE:
            return any(c.is_dynamic for c in self.components)
        return False

    def zero_value(self) -> Any:
        """The value an untouched storage slot of this type decodes to."""
        if self.kind == TypeKind.BOOL:
            return False
        if self.kind in (TypeKind.INT, TypeKind.UINT):
            return 0
        if self.kind == TypeKind.ADDRESS:
            return ZERO_ADDRESS
        if self.kind == TypeKind.FIXED_BYTES:
            return b'\x00' * self.length
        if self.kind == TypeKind.FIXED_POINT:
            return Decimal(0)
        if self.kind == TypeKind.BYTES:
            return b''
        if self.kind == TypeKind.STRING:
            return ''
        if self.kind == TypeKind.TUPLE:
            return tuple(c.zero_value() for c in self.components)
        if self.kind == TypeKind.FIXED_ARRAY:
            return [self.item.zero_value() for _ in range(self.length)]
        return []

    def coerce(self, value: Any) -> Any:
        """
        Bring a test-supplied value into the shape eth_abi expects.

        Hex strings are accepted for bytes and addresses, dicts keyed by field
        name for structs. Shape mismatches raise EncodeError; scalar range and
        type checks are left to eth_abi.
        """
        if self.kind == TypeKind.ADDRESS:
            if isinstance(value, str) and is_hex_address(value):
                return to_checksum_address(value)
            return value
        if self.kind in (TypeKind.BYTES, TypeKind.FIXED_BYTES):
            if isinstance(value, str):
                try:
                    return bytes(HexBytes(value))
                except ValueError as e:
                    raise EncodeError(
                        request=value,
                        underlying_exception=e,
                        extra_info=f'Value {value!r} is not valid hex for {self.canonical}',
                    )
            return value
        if self.kind == TypeKind.TUPLE:
            return tuple(c.coerce(v) for c, v in zip(self.components, self._tuple_items(value)))
        if self.kind in (TypeKind.FIXED_ARRAY, TypeKind.DYNAMIC_ARRAY):
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
                raise EncodeError(
                    request=repr(value),
                    extra_info=f'Expected a sequence for {self.canonical}, got {type(value).__name__}',
                )
            if self.kind == TypeKind.FIXED_ARRAY and len(value) != self.length:
                raise EncodeError(
                    request=repr(value),
                    extra_info=f'Expected {self.length} elements for {self.canonical}, got {len(value)}',
                )
            return [self.item.coerce(v) for v in value]
        return value

    def _tuple_items(self, value: Any) -> Sequence[Any]:
        if isinstance(value, dict):
            if not all(self.names):
                raise EncodeError(
                    request=repr(value),
                    extra_info=f'Struct {self.canonical} has unnamed fields, pass a tuple instead of a dict',
                )
            missing = [n for n in self.names if n not in value]
            if missing:
                raise EncodeError(
                    request=repr(value),
                    extra_info=f'Struct {self.canonical} is missing fields {missing}',
                )
            return [value[n] for n in self.names]
        if isinstance(value, (list, tuple)):
            if len(value) != len(self.components):
                raise EncodeError(
                    request=repr(value),
                    extra_info=(
                        f'Struct {self.canonical} has {len(self.components)} fields, '
                        f'got {len(value)} values'
                    ),
                )
            return value
        raise EncodeError(
            request=repr(value),
            extra_info=f'Expected a tuple, list or dict for {self.canonical}, got {type(value).__name__}',
        )

    def normalize(self, value: Any) -> Any:
        """Post-process a value decoded by eth_abi: checksum addresses, lists for arrays."""
        if self.kind == TypeKind.ADDRESS:
            return to_checksum_address(value)
        if self.kind == TypeKind.TUPLE:
            return tuple(c.normalize(v) for c, v in zip(self.components, value))
        if self.kind in (TypeKind.FIXED_ARRAY, TypeKind.DYNAMIC_ARRAY):
            return [self.item.normalize(v) for v in value]
        return value


def zero_value(descriptor: TypeDescriptor) -> Any:
    return descriptor.zero_value()


def encode_values(descriptors: Sequence[TypeDescriptor], values: Sequence[Any]) -> bytes:
    """
    ABI-encode `values` against `descriptors`.

    Raises:
        EncodeError: If a value's runtime shape does not fit its declared type.
    """
    types = [d.canonical for d in descriptors]
    if len(values) != len(descriptors):
        raise EncodeError(
            request=repr(values),
            extra_info=f'Expected {len(descriptors)} values for {types}, got {len(values)}',
        )
    coerced = [d.coerce(v) for d, v in zip(descriptors, values)]
    try:
        return eth_abi.encode(types, coerced)
    except (EncodingError, TypeError, ValueError, OverflowError) as e:
        raise EncodeError(
            request=repr(values),
            underlying_exception=e,
            extra_info=f'Failed to encode values for {types}: {e}',
        )


def decode_values(descriptors: Sequence[TypeDescriptor], data: bytes) -> Tuple[Any, ...]:
    """
    ABI-decode `data` against `descriptors`.

    Raises:
        DecodeError: If the bytes do not match the declared types.
    """
    types = [d.canonical for d in descriptors]
    try:
        decoded = eth_abi.decode(types, bytes(data))
    except (DecodingError, OverflowError, ValueError) as e:
        raise DecodeError(
            request=HexBytes(data).hex(),
            underlying_exception=e,
            extra_info=f'Malformed data for {types}: {e}',
        )
    return tuple(d.normalize(v) for d, v in zip(descriptors, decoded))


def encode_revert_reason(reason: str) -> bytes:
    """Encode `reason` the way Solidity's require/revert does: Error(string)."""
    return REVERT_REASON_SELECTOR + eth_abi.encode(['string'], [reason])


@dataclass(frozen=True)
class FunctionSignature:
    """
    A callable entry of an ABI. Identity is the 4-byte selector.
    """

    name: str
    inputs: Tuple[TypeDescriptor, ...]
    outputs: Tuple[TypeDescriptor, ...]
    input_names: Tuple[str, ...] = ()
    output_names: Tuple[str, ...] = ()
    abi: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @classmethod
    def from_abi_entry(cls, entry: Dict[str, Any]) -> 'FunctionSignature':
        inputs = entry.get('inputs', [])
        outputs = entry.get('outputs', [])
        return cls(
            name=entry['name'],
            inputs=tuple(TypeDescriptor.from_abi_param(p) for p in inputs),
            outputs=tuple(TypeDescriptor.from_abi_param(p) for p in outputs),
            input_names=tuple(p.get('name', '') for p in inputs),
            output_names=tuple(p.get('name', '') for p in outputs),
            abi=entry,
        )

    @cached_property
    def signature(self) -> str:
        return '{}({})'.format(self.name, ','.join(d.canonical for d in self.inputs))

    @cached_property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]

    def encode_calldata(self, args: Sequence[Any] = ()) -> bytes:
        return self.selector + encode_values(self.inputs, args)

    def decode_inputs(self, calldata: bytes) -> Tuple[Any, ...]:
        """
        Decode full calldata (selector included) into the input value tuple.
        """
        calldata = bytes(calldata)
        if calldata[:4] != self.selector:
            raise DecodeError(
                request=HexBytes(calldata).hex(),
                extra_info=f'Calldata selector does not match {self.signature}',
            )
        return decode_values(self.inputs, calldata[4:])

    def encode_outputs(self, values: Sequence[Any]) -> bytes:
        return encode_values(self.outputs, values)

    def decode_outputs(self, data: bytes) -> Tuple[Any, ...]:
        return decode_values(self.outputs, data)

    def zero_outputs(self) -> Any:
        """
        Default return value in value shape: the bare value for a single
        output, a tuple otherwise.
        """
        zeros = tuple(d.zero_value() for d in self.outputs)
        if len(zeros) == 1:
            return zeros[0]
        return zeros

    def outputs_from_value(self, value: Any) -> Tuple[Any, ...]:
        """
        Turn a configured return value into the full output tuple.

        Raises:
            ArityMismatch: If the value carries a different number of outputs
                than the function declares.
        """
        arity = len(self.outputs)
        if arity == 0:
            if value is None or (isinstance(value, (list, tuple)) and len(value) == 0):
                return ()
            raise ArityMismatch(
                request=repr(value),
                extra_info=f'{self.signature} declares no outputs but a value was configured',
            )
        if arity == 1:
            return (value,)
        if isinstance(value, dict) and all(self.output_names):
            if set(value) != set(self.output_names):
                raise ArityMismatch(
                    request=repr(value),
                    extra_info=f'{self.signature} expects outputs {list(self.output_names)}, got {list(value)}',
                )
            return tuple(value[n] for n in self.output_names)
        if isinstance(value, (list, tuple)) and len(value) == arity:
            return tuple(value)
        count = len(value) if isinstance(value, (list, tuple, dict)) else 1
        raise ArityMismatch(
            request=repr(value),
            extra_info=f'{self.signature} declares {arity} outputs, producer supplied {count}',
        )


class SignatureTable:
    """
    Function signatures of one ABI, indexed by selector, canonical signature and name.
    """

    def __init__(self, signatures: Sequence[FunctionSignature]):
        self._by_selector: Dict[bytes, FunctionSignature] = {}
        self._by_signature: Dict[str, FunctionSignature] = {}
        self._by_name: Dict[str, List[FunctionSignature]] = {}
        for sig in signatures:
            if sig.selector in self._by_selector:
                raise InvalidMockSpec(
                    request=sig.signature,
                    extra_info=(
                        f'Selector 0x{sig.selector.hex()} of {sig.signature} collides with '
                        f'{self._by_selector[sig.selector].signature}'
                    ),
                )
            self._by_selector[sig.selector] = sig
            self._by_signature[sig.signature] = sig
            self._by_name.setdefault(sig.name, []).append(sig)
        logger.trace('Indexed {} function signatures', len(self._by_selector))

    @classmethod
    def from_abi(cls, abi: Union[str, List[Dict[str, Any]], Dict[str, Any]]) -> 'SignatureTable':
        return cls([FunctionSignature.from_abi_entry(e) for e in function_entries(abi)])

    def get(self, selector: bytes) -> Optional[FunctionSignature]:
        return self._by_selector.get(bytes(selector))

    def lookup(self, name_or_signature: str) -> FunctionSignature:
        """
        Resolve a bare name (when not overloaded) or a canonical signature.

        Raises:
            UnknownFunction: If nothing, or more than one overload, matches.
        """
        if name_or_signature in self._by_signature:
            return self._by_signature[name_or_signature]
        candidates = self._by_name.get(name_or_signature, [])
        if len(candidates) == 1:
            return candidates[0]
        if candidates:
            raise UnknownFunction(
                request=name_or_signature,
                extra_info=(
                    f'{name_or_signature} is overloaded, use one of '
                    f'{[c.signature for c in candidates]}'
                ),
            )
        raise UnknownFunction(
            request=name_or_signature,
            extra_info=f'No function named {name_or_signature}',
        )

    def names(self) -> List[str]:
        return list(self._by_name)

    def is_overloaded(self, name: str) -> bool:
        return len(self._by_name.get(name, [])) > 1

    def __iter__(self) -> Iterator[FunctionSignature]:
        return iter(self._by_selector.values())

    def __len__(self) -> int:
        return len(self._by_selector)

    def __contains__(self, name_or_signature: str) -> bool:
        return name_or_signature in self._by_signature or name_or_signature in self._by_name


def load_abi(abi: Union[str, List[Dict[str, Any]], Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Accept a parsed ABI list, its JSON text, or a compiler artifact with an 'abi' key.
    """
    if isinstance(abi, str):
        try:
            abi = json.loads(abi)
        except json.JSONDecodeError as e:
            raise InvalidMockSpec(underlying_exception=e, extra_info=f'ABI is not valid JSON: {e}')
    if isinstance(abi, dict):
        if 'abi' not in abi:
            raise InvalidMockSpec(request=list(abi), extra_info="Artifact has no 'abi' key")
        abi = abi['abi']
    if not isinstance(abi, (list, tuple)):
        raise InvalidMockSpec(request=repr(abi), extra_info='ABI must be a list of entries')
    return list(abi)


def function_entries(abi: Union[str, List[Dict[str, Any]], Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Returns the function entries of a contract ABI.
    """
    return [entry for entry in load_abi(abi) if entry.get('type', 'function') == 'function']


def abi_entry_from_types(name: str, input_types: Sequence[str], output_types: Sequence[str]) -> Dict[str, Any]:
    """
    Build an ABI function entry from bare type strings, so a mock defined
    without an ABI still gets a regular contract binding.
    """
    def params(types):
        return [_abi_param(TypeDescriptor.from_type_string(t), '') for t in types]

    return {
        'type': 'function',
        'name': name,
        'inputs': params(input_types),
        'outputs': params(output_types),
        'stateMutability': 'nonpayable',
    }


def _abi_param(descriptor: TypeDescriptor, name: str) -> Dict[str, Any]:
    suffix = ''
    node = descriptor
    while node.kind in (TypeKind.FIXED_ARRAY, TypeKind.DYNAMIC_ARRAY):
        suffix = ('[{}]'.format(node.length) if node.kind == TypeKind.FIXED_ARRAY else '[]') + suffix
        node = node.item
    if node.kind != TypeKind.TUPLE:
        return {'name': name, 'type': descriptor.canonical}
    return {
        'name': name,
        'type': 'tuple' + suffix,
        'components': [
            _abi_param(c, n or f'field{i}') for i, (c, n) in enumerate(zip(node.components, node.names))
        ],
    }
