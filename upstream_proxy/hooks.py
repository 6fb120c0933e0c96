"""Hook system for observing and modifying proxied exchanges.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import functools
import importlib.util
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from aiohttp import web

from upstream_proxy.builtin_hooks import BUILTIN_POST_HOOKS, BUILTIN_PRE_HOOKS
from upstream_proxy.errors import HookError

logger = logging.getLogger(__name__)

BEFORE = "before_request"
AFTER = "after_response"

Hook = Callable[..., Any]
HookRef = Union[str, Dict[str, Any]]


def as_hook_list(hooks: Union[None, Hook, Sequence[Hook]]) -> List[Hook]:
    """Normalize a single hook or a sequence of hooks into a list."""
    if hooks is None:
        return []
    if callable(hooks):
        return [hooks]
    return list(hooks)


def hook_name(hook: Hook) -> str:
    if isinstance(hook, functools.partial):
        hook = hook.func
    return getattr(hook, "__qualname__", None) or repr(hook)


async def run_hooks(
    hooks: Sequence[Hook],
    subject: Any,
    request: web.Request,
    response: web.StreamResponse,
    stage: str,
):
    """Run hooks one after another, awaiting each before the next.

    Args:
        hooks: Hooks in declaration order
        subject: UpstreamRequest for before_request, ClientResponse for after_response
        request: Inbound request
        response: Caller response, not yet prepared
        stage: BEFORE or AFTER, used in errors and logs

    Raises:
        HookError: A hook raised; remaining hooks are skipped
    """
    for hook in hooks:
        try:
            result = hook(subject, request, response)
            if inspect.isawaitable(result):
                await result
        except web.HTTPException:
            raise
        except Exception as e:
            raise HookError(stage, hook_name(hook), e) from e


class HookManager:
    """Manager for loading hook modules and resolving hooks by name."""

    def __init__(self, hooks_dir: Optional[str] = None):
        """Initialize hook manager.

        Args:
            hooks_dir: Directory containing hook modules
        """
        self.hooks_dir = Path(hooks_dir) if hooks_dir else None
        self.before_request_hooks: List[Hook] = []
        self.after_response_hooks: List[Hook] = []
        self.registry: Dict[str, Hook] = {}

    def load_hooks(self):
        """Load all hooks from the hooks directory."""
        if not self.hooks_dir:
            return

        if not self.hooks_dir.exists():
            logger.warning(f"Hooks directory not found: {self.hooks_dir}")
            return

        logger.info(f"Loading hooks from: {self.hooks_dir}")

        for hook_file in sorted(self.hooks_dir.glob("*.py")):
            if hook_file.name.startswith("_"):
                continue

            try:
                self._load_hook_file(hook_file)
            except Exception as e:
                logger.error(f"Error loading hook {hook_file}: {e}", exc_info=True)

        logger.info(
            f"Loaded {len(self.before_request_hooks)} before_request hooks and "
            f"{len(self.after_response_hooks)} after_response hooks"
        )

    def _load_hook_file(self, hook_file: Path):
        """Load hooks from a single file.

        Args:
            hook_file: Path to hook file
        """
        spec = importlib.util.spec_from_file_location(hook_file.stem, hook_file)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        # Definition order, so hooks run in the order they are written
        functions = [
            obj
            for obj in vars(module).values()
            if inspect.isfunction(obj) and obj.__module__ == module.__name__
        ]

        for obj in functions:
            name = obj.__name__
            registered = False

            if name == BEFORE or getattr(obj, "_before_request_hook", False):
                self.before_request_hooks.append(obj)
                registered = True
                logger.debug(f"Registered before_request hook: {hook_file.stem}.{name}")

            if name == AFTER or getattr(obj, "_after_response_hook", False):
                self.after_response_hooks.append(obj)
                registered = True
                logger.debug(f"Registered after_response hook: {hook_file.stem}.{name}")

            if registered:
                self.registry[f"{hook_file.stem}.{name}"] = obj
                self.registry.setdefault(name, obj)

    def resolve(self, refs: Optional[Sequence[HookRef]], stage: str) -> List[Hook]:
        """Turn hook references from configuration into callables.

        A reference is either the name of a loaded hook (``"auth.sign"`` or
        ``"sign"``) or a mapping naming a built-in hook with its params::

            - hook: set_request_header
              params: {name: X-Env, value: staging}

        When ``refs`` is None, every loaded hook of that stage is used.

        Raises:
            ValueError: Unknown hook reference
        """
        if refs is None:
            return list(self.before_request_hooks if stage == BEFORE else self.after_response_hooks)

        builtins = BUILTIN_PRE_HOOKS if stage == BEFORE else BUILTIN_POST_HOOKS
        hooks = []
        if isinstance(refs, (str, dict)):
            refs = [refs]

        for ref in refs:
            if isinstance(ref, dict):
                name = ref.get("hook")
                if name not in builtins:
                    raise ValueError(f"Unknown {stage} built-in hook: {name}")
                hooks.append(functools.partial(builtins[name], params=ref.get("params") or {}))
            elif ref in self.registry:
                hooks.append(self.registry[ref])
            elif ref in builtins:
                hooks.append(functools.partial(builtins[ref], params={}))
            else:
                raise ValueError(f"Unknown {stage} hook: {ref}")

        return hooks


def before_request(func: Callable) -> Callable:
    """Decorator to mark a function as a before_request hook.

    Example:
        @before_request
        async def my_hook(upstream_request, request, response):
            upstream_request.headers["X-Trace"] = "1"
    """
    func._before_request_hook = True
    return func


def after_response(func: Callable) -> Callable:
    """Decorator to mark a function as an after_response hook.

    Example:
        @after_response
        async def my_hook(upstream_response, request, response):
            response.headers["X-Upstream-Status"] = str(upstream_response.status)
    """
    func._after_response_hook = True
    return func
