import sys
from pathlib import Path
from typing import List

from loguru import logger

from contract_mock.utils.models.settings_model import LoggingConfig


FORMAT = '{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[module]} | {message}'
LIBRARY = 'contract_mock'

# Every record emitted through get_logger() carries extra['library'] == LIBRARY
_mock_logger = logger.bind(library=LIBRARY)

# sink ids added by configure_mock_logging() for log files
_file_handler_ids: List[int] = []


def create_level_filter(level):
    """
    Build a loguru filter that lets through only this library's records of
    exactly `level`, so sinks added here never pick up the host's logs.

    Args:
        level (str): Level name, e.g. 'DEBUG'.

    Returns:
        Callable: The filter function.
    """
    def level_filter(record):
        return record['level'].name == level and record['extra'].get('library') == LIBRARY
    return level_filter


def get_logger(module_name: str = 'ContractMock'):
    """
    Logger for one component of the library, bound to its module name.

    No sinks are configured here; records go wherever the host's loguru
    setup sends them until configure_mock_logging() or debug mode adds more.
    """
    return _mock_logger.bind(module=module_name)


def configure_mock_logging(config: LoggingConfig) -> List[int]:
    """
    Add the file and console sinks described by `config`.

    One file per enabled level is written under `config.log_dir` (relative
    paths resolve against the working directory). Console sinks are only added
    when `enable_console_logging` is set.

    Args:
        config (LoggingConfig): The logging configuration to apply.

    Returns:
        list: Ids of the sinks that were added.
    """
    handler_ids = []
    if config.log_dir is not None:
        log_dir = Path(config.log_dir)
        if not log_dir.is_absolute():
            log_dir = Path.cwd() / log_dir
        log_dir.mkdir(parents=True, exist_ok=True, mode=0o755)

        for level in (lvl for lvl, enabled in config.file_levels.items() if enabled):
            handler_id = logger.add(
                str(log_dir / f'{level.lower()}.log'),
                level=level,
                format=config.format,
                filter=create_level_filter(level),
                rotation=config.rotation,
                retention=config.retention,
                compression=config.compression,
                backtrace=True,
                diagnose=True,
            )
            _file_handler_ids.append(handler_id)
            handler_ids.append(handler_id)

    if config.enable_console_logging:
        for level, stream in config.console_levels.items():
            handler_ids.append(
                logger.add(
                    sys.stdout if stream == 'stdout' else sys.stderr,
                    level=level,
                    format=config.format,
                    filter=create_level_filter(level),
                    colorize=True,
                ),
            )
    return handler_ids


def disable_mock_file_logging():
    """Remove the file sinks added by configure_mock_logging()."""
    while _file_handler_ids:
        handler_id = _file_handler_ids.pop()
        try:
            logger.remove(handler_id)
        except ValueError:
            # already removed by the host
            pass


def enable_debug_logging() -> List[int]:
    """
    Send this library's DEBUG and TRACE records to stdout.

    Returns:
        list: Handler ids, so callers can remove them again.
    """
    return [
        logger.add(sys.stdout, level=level, format=FORMAT, filter=create_level_filter(level), colorize=True)
        for level in ('TRACE', 'DEBUG')
    ]


default_logger = get_logger()
