from .settings import CacheSettings, get_settings
from .logging import configure_logging, log_error
from .tokens import TokenConfig, AVAILABLE_TOKENS, get_token_by_address, get_token_by_symbol

__all__ = [
    'CacheSettings',
    'get_settings',
    'configure_logging',
    'log_error',
    'TokenConfig',
    'AVAILABLE_TOKENS',
    'get_token_by_address',
    'get_token_by_symbol',
]
