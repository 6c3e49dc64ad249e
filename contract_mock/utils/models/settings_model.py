from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional
from typing import Sequence
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class RPCNodeConfig(BaseModel):
    """RPC node configuration model."""

    url: str


class ConnectionLimits(BaseModel):
    """Connection limits configuration model."""

    max_connections: int = 100
    max_keepalive_connections: int = 50
    keepalive_expiry: int = 300


class RPCConfigBase(BaseModel):
    """Node pool that receives every request the mocks do not intercept."""

    full_nodes: List[RPCNodeConfig]
    retry: int
    request_time_out: int
    connection_limits: ConnectionLimits = ConnectionLimits()


class MockProviderConfig(BaseModel):
    """Configuration of the web3 provider that routes calls to mocks."""

    chain_id: int = 31337
    gas_estimate: int = 30000
    revert_code: int = 3
    backend: Optional[RPCConfigBase] = None


class MockOptions(BaseModel):
    """Per-mock construction options."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # overrides random address allocation
    address: Optional[str] = None
    # AsyncWeb3 instance used to build the contract binding
    provider: Optional[Any] = None


class MockFunctionSpec(BaseModel):
    """A single function of a mock built without an ABI."""

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    function_name: str = Field(alias='functionName')
    input_types: List[str] = Field(default_factory=list, alias='inputTypes')
    output_types: List[str] = Field(default_factory=list, alias='outputTypes')
    return_values: Union[Sequence[Any], Callable[..., Any], None] = Field(
        default=None, alias='returnValues',
    )


class LoggingConfig(BaseModel):
    """Library-scoped logging configuration."""

    log_dir: Optional[str] = None
    file_levels: Dict[str, bool] = {
        'INFO': True,
        'WARNING': True,
        'ERROR': True,
        'CRITICAL': True,
        'DEBUG': False,
        'TRACE': False,
    }
    console_levels: Dict[str, str] = {
        'WARNING': 'stderr',
        'ERROR': 'stderr',
        'CRITICAL': 'stderr',
    }
    enable_console_logging: bool = False
    format: str = '{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[module]} | {message}'
    rotation: str = '20 MB'
    retention: str = '7 days'
    compression: Optional[str] = 'tar.xz'
