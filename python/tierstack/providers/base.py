"""
tierstack/providers/base.py

The provider adapter contract the evaluator talks to, its error kinds, and a
retrying wrapper that absorbs transient provider errors at the adapter
boundary (the evaluator itself never retries).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from tierstack.models.resources import ProviderResource, ResourceKind
from tierstack.utils.async_retry import async_retry

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base class for errors surfaced by a provider adapter."""


class ProviderTransientError(ProviderError):
    """A failure worth retrying (throttling, timeouts, eventual consistency)."""


class ProviderPermanentError(ProviderError):
    """A failure that aborts the run (bad request, quota, missing resource)."""


@runtime_checkable
class ProviderAdapter(Protocol):
    """Create/read/delete tagged resources and report their generated attributes.

    `create` must be safe to retry for the same logical name: a second call with
    the same kind and project/Name tags returns the existing resource.
    """

    async def create(
        self, kind: ResourceKind, attributes: Dict[str, Any], tags: Dict[str, str]
    ) -> ProviderResource: ...

    async def query(
        self,
        kind: Optional[ResourceKind] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> List[ProviderResource]: ...

    async def delete(self, resource_id: str) -> None: ...


class RetryingProvider:
    """Wraps a ProviderAdapter, retrying ProviderTransientError with a fixed delay.

    ProviderPermanentError and anything else propagate on first occurrence.
    """

    def __init__(
        self, inner: ProviderAdapter, retries: int = 5, delay: float = 2.0
    ) -> None:
        self._inner = inner
        self._retry = async_retry(
            retries=retries,
            delay=delay,
            noisy=True,
            retry_on=(ProviderTransientError,),
            label="provider call",
        )

    async def create(
        self, kind: ResourceKind, attributes: Dict[str, Any], tags: Dict[str, str]
    ) -> ProviderResource:
        return await self._retry(self._inner.create)(kind, attributes, tags)

    async def query(
        self,
        kind: Optional[ResourceKind] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> List[ProviderResource]:
        return await self._retry(self._inner.query)(kind, tags)

    async def delete(self, resource_id: str) -> None:
        await self._retry(self._inner.delete)(resource_id)
