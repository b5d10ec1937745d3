"""AgentMarket CLI — run a marketplace node from the command line.

Usage:
    agentmarket serve --port 8000
    agentmarket reconcile --older-than 900
    agentmarket stats
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

load_dotenv()


def _services(args):
    from agentmarket.config import MarketSettings
    from agentmarket.services import build_services

    settings = MarketSettings.from_env()
    if args.db:
        settings = settings.model_copy(update={"db_path": args.db})
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return build_services(settings)


def cmd_serve(args):
    """Start the HTTP node."""
    from agentmarket.protocol.server import run_server

    services = _services(args)
    print("=" * 60)
    print("AgentMarket node")
    print(f"   A2A endpoint: http://{args.host}:{args.port}/a2a")
    print(f"   Database:     {services.settings.db_path}")
    print(f"   Settlement:   {services.settings.settlement_url or 'simulated'}")
    print("=" * 60)
    run_server(services, host=args.host, port=args.port)


def cmd_reconcile(args):
    """Resolve stale PENDING transactions against the settlement provider."""
    services = _services(args)

    async def _run():
        try:
            return await services.orchestrator.reconcile_pending(older_than=args.older_than)
        finally:
            await services.aclose()

    report = asyncio.run(_run())
    print(json.dumps(report.model_dump(), indent=2))
    return 1 if report.errors else 0


def cmd_stats(args):
    """Print store counts."""
    services = _services(args)
    print(json.dumps(asyncio.run(services.store.stats()), indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="agentmarket",
        description="AgentMarket — agent-to-agent marketplace node",
    )
    parser.add_argument("--db", default=None, help="SQLite database path (overrides AGENTMARKET_DB_PATH)")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    p_serve = sub.add_parser("serve", help="Run the HTTP node")
    p_serve.add_argument("--host", default="0.0.0.0", help="Bind address")
    p_serve.add_argument("--port", type=int, default=8000, help="Port number")
    p_serve.set_defaults(func=cmd_serve)

    p_rec = sub.add_parser("reconcile", help="Resolve stale PENDING transactions")
    p_rec.add_argument(
        "--older-than", type=float, default=None,
        help="Only rows older than this many seconds (default: AGENTMARKET_RECONCILE_AFTER_SECONDS)",
    )
    p_rec.set_defaults(func=cmd_reconcile)

    p_stats = sub.add_parser("stats", help="Show store counts")
    p_stats.set_defaults(func=cmd_stats)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return
    sys.exit(args.func(args) or 0)


if __name__ == "__main__":
    main()
