from .retry import RetryExhausted, RetryPolicy

__all__ = ['RetryExhausted', 'RetryPolicy']
