"""
Preflight checks run before sync to catch common misconfigurations early.
"""

import logging
import os
import tempfile

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from calmirror.cache import CacheManager
from calmirror.models import CacheError
from calmirror.models import SyncConfig
from calmirror.models import TransportError

logger = logging.getLogger(__name__)

_OFFLINE_KEYWORDS = frozenset(
    {
        "offline",
        "network",
        "unreachable",
        "no route",
        "name or service not known",
        "connection refused",
        "temporary failure",
        "timed out",
    }
)

_AUTH_KEYWORDS = frozenset({"401", "403", "unauthorized", "forbidden", "authentication"})


def run_preflight_checks(
    cfg: SyncConfig, console: Console, transport=None, check_cache: bool = True
) -> bool:
    """Return True if sync may proceed; print issues and return False otherwise.

    The server is only contacted when a transport is supplied.
    """
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. Credentials present and the URL looks like one
    for value, label in (
        (cfg.server_url, "Server URL"),
        (cfg.username, "Username"),
        (cfg.password, "Password"),
    ):
        if not value:
            issues.append(
                (label, "not set", "Set it in the config file or via CALDAV_* env variables")
            )
    if cfg.server_url and not cfg.server_url.startswith(("http://", "https://")):
        issues.append(
            ("Server URL", cfg.server_url, "The URL must start with http:// or https://")
        )

    # 2. Cache dir writable + snapshot readable if it exists
    cache = CacheManager(cfg.cache_dir)
    try:
        cfg.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, probe = tempfile.mkstemp(dir=cfg.cache_dir, prefix=".probe-")
        os.close(fd)
        os.unlink(probe)
    except OSError as e:
        logger.error("Cache directory not writable (%s): %s", cfg.cache_dir, e)
        issues.append(
            (
                "Cache directory",
                f"{cfg.cache_dir}: {e}",
                f"Check permissions on {cfg.cache_dir}; "
                f"the snapshot is replaced atomically, so the directory itself must be writable",
            )
        )
    else:
        try:
            if check_cache:
                cache.load()
        except CacheError as e:
            logger.error("Cache not readable: %s", e)
            issues.append(
                (
                    "Cache file",
                    str(e),
                    "Run: calmirror clear-cache  (or pass --fresh to start from an empty store)",
                )
            )

    # 3. Server reachable
    if transport is not None and not issues:
        try:
            transport.check_connection()
        except TransportError as e:
            msg = str(e)
            logger.error("Cannot reach CalDAV server: %s", msg)
            lowered = msg.lower()
            if any(kw in lowered for kw in _AUTH_KEYWORDS):
                hint = "Check the username and password"
            elif any(kw in lowered for kw in _OFFLINE_KEYWORDS):
                hint = f"Server {cfg.server_url} appears unreachable; check the network"
            else:
                hint = msg
            issues.append(("CalDAV server", f"Connection failed: {msg}", hint))

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
