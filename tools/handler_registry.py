"""
Domain handler registry.

Maps a booking function name to the operation that actually performs it
(patient search, slot search, booking). Handlers live outside this core and
are only invoked with parameters that passed validation.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from config import logger

Handler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class HandlerRegistry:
    def __init__(self, handlers: Optional[Mapping[str, Handler]] = None):
        self._handlers: Dict[str, Handler] = dict(handlers or {})

    def register(self, function_name: str, handler: Handler) -> None:
        if function_name in self._handlers:
            logger.warning(f"[HANDLERS] Replacing handler for {function_name}")
        self._handlers[function_name] = handler

    def handler(self, function_name: str):
        """Decorator form of register()."""
        def decorator(fn: Handler) -> Handler:
            self.register(function_name, fn)
            return fn
        return decorator

    def get(self, function_name: str) -> Optional[Handler]:
        return self._handlers.get(function_name)

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, function_name: str) -> bool:
        return function_name in self._handlers

    async def invoke(self, function_name: str, params: Dict[str, Any]) -> Any:
        """
        Run a handler. Coroutine handlers are awaited; plain functions run in a
        worker thread so blocking clients (DB, HTTP) do not stall the loop.
        """
        handler = self._handlers[function_name]
        if inspect.iscoroutinefunction(handler):
            return await handler(dict(params))
        result = await asyncio.to_thread(handler, dict(params))
        if inspect.isawaitable(result):
            return await result
        return result
