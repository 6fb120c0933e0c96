"""Tests for hooks module."""

import functools
import tempfile
from pathlib import Path

import pytest
from aiohttp import web

from upstream_proxy.builtin_hooks import set_request_header, set_response_header
from upstream_proxy.errors import HookError
from upstream_proxy.hooks import (
    AFTER,
    BEFORE,
    HookManager,
    after_response,
    as_hook_list,
    before_request,
    run_hooks,
)


def test_as_hook_list():
    """Test single hooks and sequences are normalized to lists."""

    def hook(*args):
        pass

    assert as_hook_list(None) == []
    assert as_hook_list(hook) == [hook]
    assert as_hook_list((hook, hook)) == [hook, hook]


def test_hook_manager_no_directory():
    """Test hook manager with no directory."""
    manager = HookManager()
    manager.load_hooks()
    assert len(manager.before_request_hooks) == 0
    assert len(manager.after_response_hooks) == 0


def test_hook_manager_missing_directory():
    """Test hook manager with a directory that does not exist."""
    manager = HookManager("/nonexistent/hooks")
    manager.load_hooks()
    assert manager.before_request_hooks == []


def test_hook_manager_empty_directory():
    """Test hook manager with empty directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = HookManager(tmpdir)
        manager.load_hooks()
        assert len(manager.before_request_hooks) == 0
        assert len(manager.after_response_hooks) == 0


def test_hook_manager_loads_hooks():
    """Test hook manager loads hooks from files."""
    hook_code = '''
from upstream_proxy import hooks


async def before_request(upstream_request, request, response):
    pass


@hooks.before_request
def sign(upstream_request, request, response):
    pass


def after_response(upstream_response, request, response):
    pass


def helper():
    pass
'''
    with tempfile.TemporaryDirectory() as tmpdir:
        hook_file = Path(tmpdir) / "auth.py"
        hook_file.write_text(hook_code)

        manager = HookManager(tmpdir)
        manager.load_hooks()

        assert [h.__name__ for h in manager.before_request_hooks] == ["before_request", "sign"]
        assert len(manager.after_response_hooks) == 1
        assert "auth.sign" in manager.registry
        assert "sign" in manager.registry
        assert "helper" not in manager.registry


def test_hook_manager_ignores_private_files():
    """Test hook manager ignores files starting with underscore."""
    hook_code = '''
async def before_request(upstream_request, request, response):
    pass
'''
    with tempfile.TemporaryDirectory() as tmpdir:
        hook_file = Path(tmpdir) / "_private.py"
        hook_file.write_text(hook_code)

        manager = HookManager(tmpdir)
        manager.load_hooks()

        assert len(manager.before_request_hooks) == 0


def test_hook_manager_skips_broken_files():
    """Test a hook file that fails to import does not stop loading."""
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / "broken.py").write_text("raise RuntimeError('nope')\n")
        (Path(tmpdir) / "good.py").write_text(
            "def after_response(upstream_response, request, response):\n    pass\n"
        )

        manager = HookManager(tmpdir)
        manager.load_hooks()

        assert len(manager.after_response_hooks) == 1


def test_hook_decorators():
    """Test hook decorators mark functions correctly."""

    @before_request
    def my_before_hook(upstream_request, request, response):
        pass

    @after_response
    def my_after_hook(upstream_response, request, response):
        pass

    assert my_before_hook._before_request_hook is True
    assert my_after_hook._after_response_hook is True


def test_resolve_defaults_to_loaded_hooks():
    """Test routes without hook references get every loaded hook."""

    def hook(*args):
        pass

    manager = HookManager()
    manager.before_request_hooks = [hook]

    assert manager.resolve(None, BEFORE) == [hook]
    assert manager.resolve(None, AFTER) == []
    assert manager.resolve([], BEFORE) == []


def test_resolve_names_and_builtins():
    """Test hook references by name and built-in mappings."""

    def sign(*args):
        pass

    manager = HookManager()
    manager.registry = {"auth.sign": sign, "sign": sign}

    hooks = manager.resolve(
        ["auth.sign", {"hook": "set_request_header", "params": {"name": "X-Env", "value": "dev"}}],
        BEFORE,
    )

    assert hooks[0] is sign
    assert isinstance(hooks[1], functools.partial)
    assert hooks[1].func is set_request_header
    assert hooks[1].keywords == {"params": {"name": "X-Env", "value": "dev"}}

    single = manager.resolve({"hook": "set_response_header"}, AFTER)
    assert single[0].func is set_response_header


def test_resolve_unknown_hook():
    """Test unknown hook references fail at setup."""
    manager = HookManager()
    with pytest.raises(ValueError):
        manager.resolve(["missing"], BEFORE)
    with pytest.raises(ValueError):
        manager.resolve([{"hook": "set_request_header"}], AFTER)


@pytest.mark.asyncio
async def test_run_hooks_in_order():
    """Test sync and async hooks run sequentially in order."""
    order = []

    async def first(subject, request, response):
        order.append(("first", subject))

    def second(subject, request, response):
        order.append(("second", subject))

    async def third(subject, request, response):
        order.append(("third", subject))

    await run_hooks([first, second, third], "subject", None, None, BEFORE)

    assert order == [("first", "subject"), ("second", "subject"), ("third", "subject")]


@pytest.mark.asyncio
async def test_run_hooks_failure_stops_remaining():
    """Test a failing hook raises HookError and skips the rest."""
    order = []

    def broken(subject, request, response):
        raise ValueError("bad")

    def after(subject, request, response):
        order.append("after")

    with pytest.raises(HookError) as exc_info:
        await run_hooks([broken, after], None, None, None, AFTER)

    assert exc_info.value.stage == AFTER
    assert "broken" in exc_info.value.hook_name
    assert order == []


@pytest.mark.asyncio
async def test_run_hooks_http_exception_not_wrapped():
    """Test aiohttp HTTP exceptions propagate unchanged."""

    async def deny(subject, request, response):
        raise web.HTTPForbidden()

    with pytest.raises(web.HTTPForbidden):
        await run_hooks([deny], None, None, None, BEFORE)
