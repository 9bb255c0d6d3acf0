#!/usr/bin/env python3

from __future__ import annotations

"""
Browser/Pyodide entrypoint for rheinpegel.

Runs the monitor in watch mode with history kept in window.localStorage;
status blocks go to the Pyodide console.
"""

from typing import List

from rheinpegel.tui import main_async


def _default_argv() -> List[str]:
    argv: List[str] = [
        "--mode",
        "watch",
        "--storage",
        "browser",
        "--chart-width",
        "48",
    ]
    try:
        import js  # type: ignore[import]
    except ImportError:
        return argv

    # Optional page-level override, e.g. window.rheinpegelFallbackUrl = "https://relay.example/"
    fallback = getattr(js.window, "rheinpegelFallbackUrl", None)
    if fallback is not None and str(fallback) not in ("", "undefined"):
        argv.extend(["--fallback-url", str(fallback)])
    return argv


async def run_default_async() -> int:
    """
    Async browser entrypoint that yields to the JS event loop.
    """
    return await main_async(_default_argv())


async def run_with_args(arg_list: List[str]) -> int:
    """
    Allow JS to pass through custom CLI-style arguments if desired.
    """
    return await main_async(arg_list)
