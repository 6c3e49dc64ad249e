"""
Per-function behavior registry and call log.

Every mocked function (and the fallback) owns one BehaviorRegistry. It holds
the active Behavior, a return or revert rule backed by a Producer, and the
append-only CallRecord of decoded inputs. Resetting the behavior never touches
the call history.
"""
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

from contract_mock.codec import FunctionSignature
from contract_mock.utils.default_logger import get_logger
from contract_mock.utils.exceptions import CallIndexOutOfRange
from contract_mock.utils.exceptions import MockException


logger = get_logger('BehaviorRegistry')


class _NoData:
    """Marker for a return without any return data."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'NO_DATA'


NO_DATA = _NoData()


class Mode(str, Enum):
    RETURN = 'return'
    REVERT = 'revert'


class ProducerKind(str, Enum):
    LITERAL = 'literal'
    SYNC = 'sync'
    ASYNC = 'async'


@dataclass(frozen=True)
class Producer:
    """
    Source of a behavior's value: a literal, or a sync or async function of
    the decoded inputs. The kind is fixed when the producer is built.
    """

    kind: ProducerKind
    value: Any = None
    fn: Optional[Callable[..., Any]] = None

    @classmethod
    def literal(cls, value: Any) -> 'Producer':
        return cls(kind=ProducerKind.LITERAL, value=value)

    @classmethod
    def sync(cls, fn: Callable[..., Any]) -> 'Producer':
        return cls(kind=ProducerKind.SYNC, fn=fn)

    @classmethod
    def async_(cls, fn: Callable[..., Awaitable[Any]]) -> 'Producer':
        return cls(kind=ProducerKind.ASYNC, fn=fn)

    @classmethod
    def of(cls, value: Any) -> 'Producer':
        if isinstance(value, Producer):
            return value
        if inspect.iscoroutinefunction(value):
            return cls.async_(value)
        if callable(value):
            return cls.sync(value)
        return cls.literal(value)


@dataclass(frozen=True)
class Behavior:
    mode: Mode
    producer: Producer


@dataclass(frozen=True)
class ResolvedOutcome:
    """
    Result of resolving a behavior: a return value or a revert reason.
    `producer_failed` marks reverts caused by a producer raising.
    """

    mode: Mode
    value: Any = None
    producer_failed: bool = False


class PendingOutcome:
    """
    An outcome that still depends on an awaitable produced by the behavior.
    The dispatch hook awaits it before encoding a response.
    """

    def __init__(self, mode: Mode, awaitable: Awaitable[Any], name: str):
        self.mode = mode
        self._awaitable = awaitable
        self._name = name

    async def wait(self) -> ResolvedOutcome:
        try:
            value = await settle(self._awaitable)
        except MockException:
            raise
        except Exception as e:
            return _producer_failure(self._name, e)
        return ResolvedOutcome(mode=self.mode, value=value)


async def settle(value: Any) -> Any:
    """
    Await `value` until it is concrete. An async producer may resolve to
    another function; that one is called without arguments and settled too.
    """
    while inspect.isawaitable(value):
        value = await value
    if callable(value):
        value = value()
        while inspect.isawaitable(value):
            value = await value
    return value


def _producer_failure(name: str, exc: Exception) -> ResolvedOutcome:
    reason = str(exc) or type(exc).__name__
    logger.warning('Producer for {} raised {}, reverting with reason {!r}', name, type(exc).__name__, reason)
    return ResolvedOutcome(mode=Mode.REVERT, value=reason, producer_failed=True)


class CallRecord:
    """Append-only log of decoded input tuples."""

    def __init__(self, name: str):
        self._name = name
        self._calls: List[Tuple[Any, ...]] = []

    def append(self, inputs: Tuple[Any, ...]):
        self._calls.append(inputs)

    def get(self, index: int) -> Tuple[Any, ...]:
        if index < 0 or index >= len(self._calls):
            raise CallIndexOutOfRange(
                request={'function': self._name, 'index': index},
                extra_info=f'{self._name} was called {len(self._calls)} times, no call at index {index}',
            )
        return self._calls[index]

    def __len__(self) -> int:
        return len(self._calls)

    def __iter__(self):
        return iter(list(self._calls))


class _Action:
    """`will.return_()` / `will.return_.with_(value)` style entry point."""

    def __init__(self, apply: Callable[..., None]):
        self._apply = apply

    def __call__(self):
        self._apply()

    def with_(self, value: Any):
        self._apply(value)


class Will:
    def __init__(self, registry: 'BehaviorRegistry'):
        self.return_ = _Action(registry.set_return)
        self.revert = _Action(registry.set_revert)


class BehaviorRegistry:
    """
    Behavior and call log of one function, or of the fallback when
    `signature` is None.
    """

    def __init__(self, signature: Optional[FunctionSignature] = None):
        self.signature = signature
        self.name = signature.signature if signature is not None else 'fallback'
        self.will = Will(self)
        self._calls = CallRecord(self.name)
        self._behavior: Behavior = self._default_behavior()
        self._configured = False

    def _default_behavior(self) -> Behavior:
        if self.signature is None:
            return Behavior(mode=Mode.RETURN, producer=Producer.literal(NO_DATA))
        return Behavior(mode=Mode.RETURN, producer=Producer.literal(self.signature.zero_outputs()))

    @property
    def behavior(self) -> Behavior:
        return self._behavior

    @property
    def configured(self) -> bool:
        return self._configured

    def reset(self):
        """Restore the zero-value return behavior. Call history is kept."""
        self._behavior = self._default_behavior()
        self._configured = False
        logger.debug('Reset behavior of {}', self.name)

    def set_return(self, value: Any = NO_DATA):
        """Return `value` (or a value computed from the inputs); no value returns empty data."""
        self._set(Behavior(mode=Mode.RETURN, producer=Producer.of(value)))

    def set_revert(self, reason: Any = ''):
        """Revert with `reason` (or a reason computed from the inputs); no reason reverts without data."""
        self._set(Behavior(mode=Mode.REVERT, producer=Producer.of(reason)))

    def _set(self, behavior: Behavior):
        self._behavior = behavior
        self._configured = True
        logger.debug('{} will {} via {} producer', self.name, behavior.mode.value, behavior.producer.kind.value)

    def resolve(self, inputs: Tuple[Any, ...]) -> Union[ResolvedOutcome, PendingOutcome]:
        """
        Record `inputs` and resolve the active behavior against them.

        The call is recorded before the producer runs, so reverted calls show
        up in the history too. An async producer yields a PendingOutcome that
        the caller must await.
        """
        self._calls.append(inputs)
        behavior = self._behavior
        producer = behavior.producer

        if producer.kind == ProducerKind.LITERAL:
            return ResolvedOutcome(mode=behavior.mode, value=producer.value)

        try:
            result = producer.fn(*inputs)
        except MockException:
            raise
        except Exception as e:
            return _producer_failure(self.name, e)

        if producer.kind == ProducerKind.ASYNC or inspect.isawaitable(result):
            return PendingOutcome(behavior.mode, result, self.name)
        return ResolvedOutcome(mode=behavior.mode, value=result)

    @property
    def call_count(self) -> int:
        return len(self._calls)

    @property
    def calls(self) -> List[Tuple[Any, ...]]:
        return list(self._calls)

    def get_call_data(self, index: int) -> Tuple[Any, ...]:
        return self._calls.get(index)

    def __repr__(self):
        return f'BehaviorRegistry({self.name}, mode={self._behavior.mode.value}, calls={len(self._calls)})'
