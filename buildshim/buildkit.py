"""Starting the buildkitd daemon."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from typing import Mapping

from buildshim.config import CONFIG_PATH, BuildkitdConfig

log = logging.getLogger(__name__)

DEFAULT_BINARY = "/usr/bin/buildkitd"
SYSTEM_PATH = "/sbin:/usr/sbin:/bin:/usr/bin"

_POLL_INTERVAL = 0.1


def build_environment(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """The child environment: the given one with the system directories added to PATH."""
    if environ is None:
        environ = os.environ
    env: dict[str, str] = {}
    for key, value in environ.items():
        if key.upper() == "PATH":
            value = f"{value}:{SYSTEM_PATH}"
        env[key] = value
    if not env:
        env["PATH"] = SYSTEM_PATH
    return env


def start(
    config: BuildkitdConfig,
    *args: str,
    stop: threading.Event | None = None,
    config_path: str | os.PathLike = CONFIG_PATH,
) -> int:
    """Save the config, run buildkitd and wait for it.

    Returns the daemon's exit status. If ``stop`` is set first, the daemon is
    sent SIGTERM and InterruptedError is raised.
    """
    config.save(config_path)

    binary = args[0] if args else ""
    if not binary:
        binary = DEFAULT_BINARY
    argv = list(args) if args else [binary]

    try:
        proc = subprocess.Popen(
            argv,
            executable=binary,
            stdin=subprocess.DEVNULL,
            env=build_environment(),
        )
    except OSError:
        log.error("Failed to execute: %s", argv)
        raise

    if stop is None:
        status = proc.wait()
        log.debug("Subprocess exited with: %s", status)
        return status

    while True:
        if stop.is_set():
            proc.terminate()
            raise InterruptedError("buildkitd start cancelled")
        try:
            status = proc.wait(timeout=_POLL_INTERVAL)
        except subprocess.TimeoutExpired:
            continue
        log.debug("Subprocess exited with: %s", status)
        return status