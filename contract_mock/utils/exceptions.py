import json


class MockException(Exception):
    """
    Base exception for the contract mocking engine.

    Carries the request that triggered the failure (calldata, address, function spec...),
    an optional response, the underlying exception if one was caught and
    free-form extra information.
    """

    def __init__(self, request=None, response=None, underlying_exception=None, extra_info=None):
        self.request = request
        self.response = response
        self.underlying_exception = underlying_exception
        self.extra_info = extra_info
        super().__init__(extra_info)

    def __str__(self):
        ret = {
            'request': self.request,
            'response': self.response,
            'extra_info': self.extra_info,
            'exception': None,
        }
        if isinstance(self.underlying_exception, Exception):
            ret.update({'exception': repr(self.underlying_exception)})
        return json.dumps(ret, default=str)

    def __repr__(self):
        return self.__str__()


class InvalidMockSpec(MockException):
    """Raised at construction time when a mock definition is unusable."""


class DecodeError(MockException):
    """Calldata does not match the declared input types."""


class EncodeError(MockException):
    """A configured value does not match the declared output types."""


class UnknownSelector(MockException):
    """No function matches the selector and no fallback behavior is configured."""


class ArityMismatch(MockException):
    """A producer supplied a different number of values than the function declares."""


class CallIndexOutOfRange(MockException):
    """A call index was requested that has not been recorded."""


class UnknownFunction(MockException):
    """A function name or signature does not identify exactly one mocked function."""


class BackendUnavailable(MockException):
    """A request could not be intercepted and there is nowhere to forward it."""
