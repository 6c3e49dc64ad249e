import itertools
import json
from typing import Any
from typing import Dict
from typing import Optional

import tenacity
from eth_utils import to_hex
from httpx import AsyncClient
from httpx import AsyncHTTPTransport
from httpx import Limits
from httpx import Timeout
from tenacity import retry
from tenacity import retry_if_exception_type
from tenacity import stop_after_attempt
from tenacity import wait_random_exponential
from web3._utils.encoding import Web3JsonEncoder
from web3.providers.async_base import AsyncBaseProvider
from web3.types import RPCEndpoint
from web3.types import RPCResponse

from contract_mock.hook import DispatchHook
from contract_mock.hook import NOT_INTERCEPTED
from contract_mock.hook import Returned
from contract_mock.utils.default_logger import enable_debug_logging
from contract_mock.utils.default_logger import get_logger
from contract_mock.utils.exceptions import BackendUnavailable
from contract_mock.utils.models.settings_model import MockProviderConfig


logger = get_logger('MockingProvider')

INTERCEPTED_METHODS = ('eth_call', 'eth_estimateGas')
# a single STOP opcode, so code checks see a contract at mock addresses
MOCK_CODE = '0x00'
TRANSFER_GAS = 21000


class MockingProvider(AsyncBaseProvider):
    """
    web3 async provider that answers calls to mock addresses through the
    dispatch hook and forwards everything else.

    Args:
        hook (DispatchHook): Hook consulted for every eth_call / eth_estimateGas.
        config (MockProviderConfig, optional): Chain id, gas estimate, revert
            error code and the optional node pool to forward requests to.
        backend (AsyncBaseProvider, optional): Provider to forward requests to.
            Takes precedence over the node pool in `config`.
        debug_mode (bool, optional): Send this library's DEBUG/TRACE logs to stdout.
    """

    def __init__(
        self,
        hook: DispatchHook,
        config: Optional[MockProviderConfig] = None,
        backend: Optional[AsyncBaseProvider] = None,
        debug_mode: bool = False,
    ):
        super().__init__()
        self._hook = hook
        self._config = config or MockProviderConfig()
        self._backend = backend
        self._debug_mode = debug_mode
        self._logger = logger
        self._request_counter = itertools.count(1)
        self._nodes = list()
        self._node_count = 0
        self._client = None
        self._async_transport = None

        if self._config.backend is not None:
            self._nodes = [{'rpc_url': node.url} for node in self._config.backend.full_nodes]
            self._node_count = len(self._nodes)

        if self._debug_mode:
            enable_debug_logging()

    async def make_request(self, method: RPCEndpoint, params: Any) -> RPCResponse:
        if method in INTERCEPTED_METHODS and params:
            transaction = params[0]
            to = transaction.get('to')
            if to is not None:
                data = transaction.get('data', transaction.get('input', '0x'))
                result = await self._hook.intercept(to, data)
                if result is not NOT_INTERCEPTED:
                    return self._intercepted_response(method, result)
        return await self._fall_through(method, params)

    async def is_connected(self, show_traceback: bool = False) -> bool:
        if self._backend is not None:
            return await self._backend.is_connected(show_traceback)
        return True

    async def aclose(self):
        """
        Close the HTTP client used for the node pool, if one was opened.
        A backend provider passed in by the caller is left open.
        """
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        self._async_transport = None
        self._logger.debug('Closed node pool HTTP client')

    async def disconnect(self) -> None:
        await self.aclose()

    async def __aenter__(self) -> 'MockingProvider':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    def _intercepted_response(self, method: str, result) -> RPCResponse:
        response: Dict[str, Any] = {'jsonrpc': '2.0', 'id': next(self._request_counter)}
        if isinstance(result, Returned):
            if method == 'eth_estimateGas':
                response['result'] = hex(self._config.gas_estimate)
            else:
                response['result'] = to_hex(result.data)
            return response

        error: Dict[str, Any] = {'code': self._config.revert_code, 'message': result.message}
        revert_data = result.to_revert_data()
        if revert_data:
            error['data'] = to_hex(revert_data)
        response['error'] = error
        self._logger.trace('Mock call reverted: {}', error)
        return response

    async def _fall_through(self, method: str, params: Any) -> RPCResponse:
        if self._backend is not None:
            return await self._backend.make_request(method, params)
        if self._node_count:
            return await self._make_rpc_jsonrpc_call(method, params)
        return self._local_response(method, params)

    def _local_response(self, method: str, params: Any) -> RPCResponse:
        """
        Minimal answers for a provider with nowhere to forward to: enough for
        web3's own bookkeeping around eth_call.
        """
        if method == 'eth_chainId':
            result = hex(self._config.chain_id)
        elif method == 'net_version':
            result = str(self._config.chain_id)
        elif method == 'eth_call':
            # an address without code returns nothing
            result = '0x'
        elif method == 'eth_estimateGas':
            result = hex(TRANSFER_GAS)
        elif method == 'eth_getCode':
            result = MOCK_CODE if params and params[0] in self._hook.registry else '0x'
        else:
            raise BackendUnavailable(
                request={'method': method, 'params': params},
                extra_info=f'{method} is not handled by mocks and no backend is configured',
            )
        return {'jsonrpc': '2.0', 'id': next(self._request_counter), 'result': result}

    async def _init_http_clients(self):
        """
        Initializes the HTTP client used to forward requests to the node pool.

        If the client has already been initialized, this function returns immediately.
        """
        if self._client is not None:
            return
        limits = self._config.backend.connection_limits
        self._async_transport = AsyncHTTPTransport(
            limits=Limits(
                max_connections=limits.max_connections,
                max_keepalive_connections=limits.max_keepalive_connections,
                keepalive_expiry=limits.keepalive_expiry,
            ),
        )
        self._client = AsyncClient(
            timeout=Timeout(timeout=float(self._config.backend.request_time_out)),
            follow_redirects=False,
            transport=self._async_transport,
        )

    def _on_node_exception(self, retry_state: tenacity.RetryCallState):
        """
        Moves the next attempt to the next node in the pool, round-robin.
        """
        exc_idx = retry_state.kwargs['node_idx']
        next_node_idx = (exc_idx + 1) % self._node_count
        retry_state.kwargs['node_idx'] = next_node_idx
        self._logger.warning(
            'Found exception while forwarding RPC on node {} at idx {}. '
            'Injecting next node {} at idx {} | exception: {} ',
            self._nodes[exc_idx], exc_idx, self._nodes[next_node_idx],
            next_node_idx, retry_state.outcome.exception(),
        )

    async def _make_rpc_jsonrpc_call(self, method: str, params: Any) -> RPCResponse:
        """
        Forwards a request the mocks did not intercept to the node pool.

        JSON-RPC level errors (reverts of real contracts included) are handed
        back untouched for web3 to interpret; only transport failures are
        retried on the next node.

        Raises:
            BackendUnavailable: If no node answered after all retries.
        """
        await self._init_http_clients()
        rpc_query = {
            'jsonrpc': '2.0',
            'method': method,
            'params': params,
            'id': next(self._request_counter),
        }
        payload = json.dumps(rpc_query, cls=Web3JsonEncoder)

        @retry(
            reraise=True,
            retry=retry_if_exception_type(BackendUnavailable),
            wait=wait_random_exponential(multiplier=1, max=10),
            stop=stop_after_attempt(self._config.backend.retry),
            before_sleep=self._on_node_exception,
        )
        async def f(node_idx):
            rpc_url = self._nodes[node_idx]['rpc_url']
            try:
                response = await self._client.post(
                    url=rpc_url,
                    content=payload,
                    headers={'Content-Type': 'application/json'},
                )
                response_data = response.json()
            except Exception as e:
                exc = BackendUnavailable(
                    request=rpc_query,
                    underlying_exception=e,
                    extra_info=f'RPC call error | REQUEST: {method} | Exception: {str(e)}',
                )
                self._logger.trace('Error in forwarding jsonrpc call, error {}', str(exc))
                raise exc

            if response.status_code != 200:
                raise BackendUnavailable(
                    request=rpc_query,
                    response=(response.status_code, response.text),
                    extra_info=f'RPC_CALL_ERROR: {response.text}',
                )
            return response_data

        return await f(node_idx=0)
