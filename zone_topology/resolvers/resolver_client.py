"""
Resolver Client - Chooses external resolver implementations

This module builds the (batch backend, DoH fallback) pair used by the
resolution coordinator from the resolver configuration.
"""

import logging
from typing import Optional, Tuple

from .base_resolver import BatchResolver, ExternalResolver
from .batch_resolver import BatchBackendResolver
from .doh_resolver import FallbackDoHResolver
from .mock_resolver import MockResolver
from ..utils.validators import ResolverConfig

logger = logging.getLogger(__name__)


class ResolverClient:
    """Unified resolver client that wires the backend and its fallback."""

    def __init__(self, config: ResolverConfig, offline: bool = False):
        """Initialize resolver client with configuration."""
        self.config = config
        self.offline = offline
        self.backend, self.fallback = self._get_resolvers()

    def _get_resolvers(self) -> Tuple[Optional[BatchResolver], ExternalResolver]:
        """Get resolver implementations based on configuration."""
        if self.offline:
            logger.info("Offline mode, using mock resolver")
            mock = MockResolver(available=False)
            return mock, mock

        backend = BatchBackendResolver() if self.config.use_backend else None
        if backend is None:
            logger.info("Batch backend disabled, resolving over DoH only")
        return backend, FallbackDoHResolver()
