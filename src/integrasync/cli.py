"""
Command-line interface for IntegraSync.

Usage (examples):
  - Track a remote directory:
      python -m integrasync.cli track --tree ./board.json https://host/tldraw

  - One reconciliation pass:
      python -m integrasync.cli pass --tree ./board.json --token TEST

  - Keep reconciling every 2 seconds until interrupted:
      python -m integrasync.cli watch --tree ./board.json --interval 2
"""

from __future__ import annotations

import argparse
import sys
import threading
from typing import Any, Dict, Iterable, Optional, Tuple

from .core.children import ChildLayout
from .core.config import AppConfig, load_config, _DEFAULT_FILES
from .core.engine import PassResult, Reconciler, summarize_counts
from .core.fetcher import HttpInstanceSource, RemoteFetcher
from .core.logging_setup import build_logger
from .core.nodes import PARENT_KIND, parse_identity
from .core.remote_client import RemoteClient
from .core.service import SyncService
from .core.tree import InMemoryTree, TreeFileError, load_tree, save_tree


def _exit_code(result: PassResult) -> int:
    return 2 if result.failed else 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--tree", default=None, help="Tree file (JSON)")
    p.add_argument("--config", default=None, help="Config file (YAML); default search path otherwise")
    p.add_argument("--dry-run", action="store_true", help="Run the pass but do not write the tree file")
    p.add_argument("--concurrency", type=int, default=None, help="Parallel directory fetches")

    # Remote / HTTP
    p.add_argument("--token", default=None, help="Bearer token sent to remote directories")
    p.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    p.add_argument("--timeout-sec", type=float, default=None, help="Per-request timeout seconds")
    p.add_argument("--retries", type=int, default=None, help="HTTP retries (5xx/network)")

    # Logging
    p.add_argument("--logs-dir", default=None, help="Logs base directory")
    p.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    p.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="isync", description="IntegraSync CLI")
    sub = p.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("pass", help="Run a single reconciliation pass")
    _add_common(a)

    w = sub.add_parser("watch", help="Reconcile periodically until interrupted")
    _add_common(w)
    w.add_argument("--interval", type=float, default=None, help="Seconds between passes")

    t = sub.add_parser("track", help="Add a parent node for a remote directory")
    _add_common(t)
    t.add_argument("identity", help="Directory identity (usually a URL)")

    return p


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Only options actually given on the command line override config."""
    pairs = [
        (("tree", "path"), args.tree),
        (("app", "concurrency"), args.concurrency),
        (("remote", "token"), args.token),
        (("remote", "verify_tls"), args.verify_tls),
        (("remote", "timeout_sec"), args.timeout_sec),
        (("remote", "retries"), args.retries),
        (("logging", "base_dir"), args.logs_dir),
        (("logging", "console_level"), args.console_level),
        (("logging", "file_level"), args.file_level),
        (("scheduler", "interval_sec"), getattr(args, "interval", None)),
    ]
    out: Dict[str, Any] = {}
    for (section, key), value in pairs:
        if value is not None:
            out.setdefault(section, {})[key] = value
    if args.dry_run:
        out.setdefault("app", {})["dry_run"] = True
    return out


def _config_files(args: argparse.Namespace) -> Tuple[str, ...]:
    return (args.config,) if args.config else _DEFAULT_FILES


def _build_reconciler(cfg: AppConfig, tree: InMemoryTree, logger) -> Reconciler:
    client = RemoteClient(
        token=cfg.remote.token,
        verify_tls=bool(cfg.remote.verify_tls),
        timeout_sec=cfg.remote.timeout_sec,
        retries=cfg.remote.retries,
        backoff_base_sec=cfg.remote.backoff_base_sec,
        logger=logger,
    )
    fetcher = RemoteFetcher(
        HttpInstanceSource(client, logger=logger),
        concurrency=cfg.app.concurrency,
        marker=cfg.status.error_marker,
        logger=logger,
    )
    return Reconciler(
        tree,
        fetcher,
        parse=parse_identity,
        marker=cfg.status.error_marker,
        layout=ChildLayout(width=cfg.layout.child_width, height=cfg.layout.child_height),
        logger=logger,
    )


def _pass_cmd(cfg: AppConfig, tree: InMemoryTree, logger) -> int:
    reconciler = _build_reconciler(cfg, tree, logger)
    result = reconciler.run_pass()
    if not cfg.app.dry_run:
        save_tree(tree, cfg.tree.path)
    summary = summarize_counts(result.counts)
    logger.info("Pass summary: %s", summary)
    print(summary)
    return _exit_code(result)


def _watch_cmd(cfg: AppConfig, tree: InMemoryTree, logger, stop: Optional[threading.Event] = None) -> int:
    reconciler = _build_reconciler(cfg, tree, logger)

    def persist(result: PassResult) -> None:
        if result.changed and not cfg.app.dry_run:
            save_tree(tree, cfg.tree.path)

    stop = stop or threading.Event()
    service = SyncService(reconciler, interval_sec=cfg.scheduler.interval_sec, on_pass=persist, logger=logger)
    service.start()
    try:
        while not stop.wait(0.5):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        service.stop(timeout=cfg.remote.timeout_sec * (cfg.remote.retries + 1) + 5)
    return 0


def _track_cmd(cfg: AppConfig, tree: InMemoryTree, identity: str, logger) -> int:
    identity = parse_identity(identity)
    if not identity:
        logger.error("Empty identity")
        return 1
    for n in tree.list_nodes():
        if n.is_parent and parse_identity(n.label) == identity:
            logger.info("Already tracked: %s (node %s)", identity, n.id)
            print(n.id)
            return 0
    node_id = tree.add_node(PARENT_KIND, identity)
    if not cfg.app.dry_run:
        save_tree(tree, cfg.tree.path)
    logger.info("Tracking %s as node %s", identity, node_id)
    print(node_id)
    return 0


def main(argv: Iterable[str] | None = None, *, stop: Optional[threading.Event] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        cfg = load_config(_cli_overrides(args), files=_config_files(args))
    except (ValueError, OSError) as e:
        print(f"isync: {e}", file=sys.stderr)
        return 1

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"tree": cfg.tree.path},
    )
    logger.info("Starting isync %s (dry_run=%s)", args.cmd, cfg.app.dry_run)

    try:
        tree = load_tree(cfg.tree.path, logger=logger)
        if args.cmd == "pass":
            return _pass_cmd(cfg, tree, logger)
        if args.cmd == "watch":
            return _watch_cmd(cfg, tree, logger, stop)
        if args.cmd == "track":
            return _track_cmd(cfg, tree, args.identity, logger)
    except TreeFileError as e:
        logger.error("%s", e)
        return 1

    parser.error("Unknown command")  # pragma: no cover
    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
