#!/usr/bin/env python3
"""
Command-line interface for the notification stream client.

Usage:
    uv run python cli.py [command] [options]

Commands:
    listen      Connect to the notification stream and print changes
    push        Push a notification through the local server
    serve       Start the local notification server
    test        Run the test suite

Examples:
    uv run python cli.py serve --port 5454
    NOTIFY_TOKEN=dev-token uv run python cli.py listen
    uv run python cli.py push "Order Update" "Your order is out for delivery" --token dev-token
"""

import argparse
import asyncio
import logging
import subprocess
import sys
from dataclasses import replace
from typing import Optional

import httpx

from notification_stream.connection import StreamConnection
from notification_stream.store import NotificationStore
from shared.config import load_settings
from shared.desktop import LoggingNotifier
from shared.errors import NotificationApiError
from shared.models import NotificationStoreState
from shared.rest_client import NotificationApiClient
from shared.session import SessionCredentials


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
        datefmt="%H:%M:%S",
    )


def print_state(state: NotificationStoreState) -> None:
    """Print a one-line summary of the store after each change."""
    print(
        f"[{state.connection_state}] {state.load_status.value} | "
        f"{len(state.notifications)} notifications, {state.unread_count} unread"
    )


async def listen(base_url: Optional[str], token: Optional[str], mark_all: bool) -> None:
    """Run the client pipeline until interrupted."""
    settings = load_settings()
    if base_url:
        settings = replace(settings, base_url=base_url)

    credentials = SessionCredentials(token or settings.token)
    if not credentials.is_authenticated:
        print("No token given. Use --token or set NOTIFY_TOKEN.")
        sys.exit(1)

    api = NotificationApiClient(settings, credentials)
    connection = StreamConnection(settings, credentials)
    store = NotificationStore(api, connection, notifier=LoggingNotifier())
    store.subscribe(print_state)

    try:
        await store.start()
        for notification in store.notifications:
            print(f"  {notification}")
        if mark_all and store.unread_count:
            try:
                await store.mark_all_as_read()
            except NotificationApiError as e:
                print(f"Could not mark all read: {e}")
        # Runs until Ctrl-C
        await asyncio.Event().wait()
    finally:
        store.logout()
        await connection.aclose()
        await api.aclose()


def push(base_url: Optional[str], token: str, title: str, message: str, category: str) -> None:
    """Create a notification on the local server."""
    settings = load_settings()
    url = f"{(base_url or settings.base_url).rstrip('/')}/demo/notifications"
    response = httpx.post(
        url,
        json={"title": title, "message": message, "type": category},
        headers={"Authorization": f"Bearer {token}"},
    )
    if response.is_error:
        print(f"Push failed: HTTP {response.status_code} {response.text}")
        sys.exit(1)
    print(f"Pushed notification #{response.json()['id']}")


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = ["uv", "run", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the local notification server."""
    cmd = ["uv", "run", "uvicorn", "api.main:app", f"--host={host}", f"--port={port}"]
    if reload:
        cmd.append("--reload")

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    subprocess.run(cmd)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Notification Stream Client CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve --port 5454
  %(prog)s listen --token dev-token
  %(prog)s push "Order Update" "Your order has shipped" --token dev-token
  %(prog)s test -v
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Listen command
    listen_parser = subparsers.add_parser("listen", help="Connect and print notification changes")
    listen_parser.add_argument("--url", default=None, help="Server base URL (default: NOTIFY_BASE_URL)")
    listen_parser.add_argument("--token", default=None, help="Bearer token (default: NOTIFY_TOKEN)")
    listen_parser.add_argument("--mark-all-read", action="store_true", help="Mark everything read after loading")

    # Push command
    push_parser = subparsers.add_parser("push", help="Push a notification via the local server")
    push_parser.add_argument("title", help="Notification title")
    push_parser.add_argument("message", help="Notification body")
    push_parser.add_argument("--type", default="ORDER_UPDATE", help="Notification category")
    push_parser.add_argument("--url", default=None, help="Server base URL")
    push_parser.add_argument("--token", default="dev-token", help="Bearer token")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the local notification server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=5454, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()
    configure_logging(args.verbose)

    if args.command == "listen":
        try:
            asyncio.run(listen(args.url, args.token, args.mark_all_read))
        except KeyboardInterrupt:
            print("\nStopped")
    elif args.command == "push":
        push(args.url, args.token, args.title, args.message, args.type)
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
