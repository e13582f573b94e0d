"""
Custom exceptions for the embedding cache.
"""


class EmbeddingCacheError(Exception):
    """Base exception for all embedding cache errors."""
    pass


class BackendError(EmbeddingCacheError):
    """
    Error talking to the persistence backend.
    
    Raised when:
    - Backend is unreachable or the request times out
    - Backend returns an error status
    - Backend returns a payload that cannot be read as cache rows
    """
    
    def __init__(self, message: str, backend: str = None, status_code: int = None):
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code


class EmbeddingProviderError(EmbeddingCacheError):
    """
    Error communicating with an embedding provider.
    
    Raised when:
    - Provider is unreachable
    - Provider returns an error response
    - Response does not contain the expected vectors
    """
    
    def __init__(self, message: str, provider: str = None, status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ConfigError(EmbeddingCacheError):
    """
    Error in cache configuration.
    
    Raised when:
    - Configuration file is missing or invalid
    - Required credentials are not set
    - Backend name is unknown
    """
    pass
