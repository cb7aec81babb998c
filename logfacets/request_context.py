#!/usr/bin/env python3
"""
Per-scope request generations and cancellation tokens.

Every logical activity (a dashboard refresh, a hover preview) runs under a
named scope. Starting a new activity in a scope bumps the scope's generation
and cancels the token handed to the previous activity.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import logging

from .errors import QueryCancelled

logger = logging.getLogger('logfacets.request_context')

DEFAULT_SCOPE = 'dashboard'


class CancellationToken:
    """One-shot cancellation signal with callbacks"""

    def __init__(self):
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Cancellation callback failed: {e}")

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run callback on cancel (immediately if already cancelled). Returns an unregister function."""
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove():
            if callback in self._callbacks:
                self._callbacks.remove(callback)
        return remove

    def raise_if_cancelled(self):
        if self._cancelled:
            raise QueryCancelled()


def merge_tokens(*tokens: Optional[CancellationToken]) -> Optional[CancellationToken]:
    """Token that fires when any of the given tokens fires"""
    active = [t for t in tokens if t is not None]
    if not active:
        return None
    if len(active) == 1:
        return active[0]

    merged = CancellationToken()
    if any(t.cancelled for t in active):
        merged.cancel()
        return merged
    handles = [token.add_callback(merged.cancel) for token in active]

    # long-lived sources must not accumulate callbacks for finished merges
    def detach():
        for remove in handles:
            remove()
    merged.add_callback(detach)
    return merged


@dataclass(frozen=True)
class RequestContext:
    """Snapshot of a scope at the moment an activity started"""
    scope: str
    generation: int
    token: CancellationToken


class RequestContextRegistry:
    """Owns the generation counter and live token of each scope"""

    def __init__(self):
        self._contexts: Dict[str, RequestContext] = {}

    def start(self, scope: Optional[str] = None) -> RequestContext:
        """Begin a new activity in scope, cancelling the previous one"""
        key = scope or DEFAULT_SCOPE
        previous = self._contexts.get(key)
        if previous is not None:
            previous.token.cancel()
        generation = previous.generation + 1 if previous else 1
        ctx = RequestContext(key, generation, CancellationToken())
        self._contexts[key] = ctx
        logger.debug(f"Started {key} generation {generation}")
        return ctx

    def current(self, scope: Optional[str] = None) -> Optional[RequestContext]:
        return self._contexts.get(scope or DEFAULT_SCOPE)

    def is_current(self, ctx: RequestContext) -> bool:
        """True while no newer activity has started in ctx's scope"""
        latest = self._contexts.get(ctx.scope)
        return latest is not None and latest.generation == ctx.generation
