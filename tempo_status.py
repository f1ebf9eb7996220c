"""
Show how long ago you last logged work in Tempo.

Usage:
    # One-shot check (default)
    tempo-status

    # Keep running, refresh hourly and print every change
    tempo-status watch

    # Store credentials (optionally test them first)
    tempo-status configure --url https://jira.example.com --token XXX --threshold 5 --test
"""

import argparse
import asyncio
import logging

from clients import TempoClient, TempoError
from credentials import CredentialError, JsonCredentialStore
from display import render_detail, render_status_line
from models import DEFAULT_WARNING_THRESHOLD_DAYS, Credentials, EngineState
from state_engine import WorklogStateEngine
from utils import config_path, format_date, setup_logging

log = logging.getLogger(__name__)

CONFIG_POLL_SEC = 5


# ============================================================================
# Commands
# ============================================================================


async def fetch_status(engine: WorklogStateEngine) -> EngineState:
    """Check credentials and wait for the resulting refresh."""
    task = await engine.check_credentials_and_refresh()
    if task is not None:
        await task
    return engine.state


def cmd_status(store: JsonCredentialStore, client: TempoClient) -> int:
    engine = WorklogStateEngine(store, client)
    state = asyncio.run(fetch_status(engine))

    print(render_status_line(state))
    print()
    for line in render_detail(state):
        print(line)

    if not state.has_credentials:
        print()
        print(f"[!] Configure credentials first: tempo-status --config {store.path} configure ...")
    return 1 if state.error_message else 0


async def watch(store: JsonCredentialStore, client: TempoClient, poll_interval: float) -> None:
    """Run the engine with its hourly timer; reload when the config file changes."""
    engine = WorklogStateEngine(store, client)

    def on_change(state: EngineState) -> None:
        if not state.is_loading:
            print(render_status_line(state), flush=True)

    engine.subscribe(on_change)

    # configure and clear run as separate processes; edits show up as a new fingerprint
    await engine.check_credentials_and_refresh()
    engine.start()
    fingerprint = await asyncio.to_thread(store.fingerprint)

    try:
        while True:
            await asyncio.sleep(poll_interval)
            current = await asyncio.to_thread(store.fingerprint)
            if current != fingerprint:
                fingerprint = current
                log.info("Config file changed, reloading credentials")
                await engine.check_credentials_and_refresh()
    finally:
        await engine.stop()


def cmd_watch(store: JsonCredentialStore, client: TempoClient, poll_interval: float) -> int:
    print(f"[*] Watching Tempo worklogs (config: {store.path}). Ctrl+C to stop.")
    try:
        asyncio.run(watch(store, client, poll_interval))
    except KeyboardInterrupt:
        print()
        print("[*] Stopped.")
    return 0


def cmd_configure(store: JsonCredentialStore, client: TempoClient, args) -> int:
    credentials = Credentials(
        api_token=args.token,
        jira_base_url=args.url,
        account_id=args.account_id or "",
        warning_threshold_days=args.threshold,
    )

    if args.test and not _test_connection(client, credentials):
        print("[!] Credentials NOT saved.")
        return 1

    try:
        store.save_credentials(credentials)
    except (ValueError, OSError) as e:
        print(f"[!] Failed to save credentials: {e}")
        return 1

    print(f"[+] Credentials saved to {store.path}")
    return 0


def cmd_test_connection(store: JsonCredentialStore, client: TempoClient) -> int:
    try:
        credentials = store.load_credentials()
    except CredentialError as e:
        print(f"[!] {e}")
        return 1
    return 0 if _test_connection(client, credentials) else 1


def cmd_detect_user(store: JsonCredentialStore, client: TempoClient, args) -> int:
    token, url = args.token, args.url
    if not (token and url):
        try:
            credentials = store.load_credentials()
        except CredentialError as e:
            print(f"[!] {e}. Pass --url and --token.")
            return 1
        token = token or credentials.api_token
        url = url or credentials.jira_base_url

    try:
        user = client.fetch_user_info(token, url)
    except TempoError as e:
        print(f"[!] Error detecting user: {e}")
        return 1

    print("[*] Detected user info:")
    if user.account_id:
        print(f"    Account ID: {user.account_id}")
    if user.name:
        print(f"    Username: {user.name}")
    if user.key:
        print(f"    Key: {user.key}")
    if user.email_address:
        print(f"    Email: {user.email_address}")
    if not (user.name or user.key or user.email_address):
        print("    Could not detect user information")
    return 0


def cmd_clear(store: JsonCredentialStore) -> int:
    store.delete_credentials()
    print("[+] Stored credentials cleared")
    return 0


def _test_connection(client: TempoClient, credentials: Credentials) -> bool:
    print(f"[*] Testing connection to {credentials.jira_base_url}...")
    try:
        worklog = client.test_connection(
            credentials.api_token, credentials.account_id, credentials.jira_base_url
        )
    except TempoError as e:
        print(f"[!] Connection failed: {e}")
        return False

    print("[+] Connection successful! Your credentials are valid.")
    if worklog is not None:
        print(f"    Latest worklog: {format_date(worklog.started_at)}")
    return True


# ============================================================================
# CLI
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tempo-status",
        description="Show how long ago you last logged work in Tempo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # One-shot check
    tempo-status

    # Run in the background, refreshing every hour
    tempo-status watch

    # Detect your Jira username for --account-id
    tempo-status detect-user --url https://jira.example.com --token XXX
        """,
    )
    parser.add_argument("--config", help="Config file (default: $TEMPO_STATUS_CONFIG or ~/.config/tempo-status/config.json)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("status", help="Refresh once and print the status (default)")

    watch_parser = sub.add_parser("watch", help="Keep running and refresh every hour")
    watch_parser.add_argument(
        "--poll", type=float, default=CONFIG_POLL_SEC, help="Seconds between config file checks"
    )

    configure = sub.add_parser("configure", help="Store Jira/Tempo credentials")
    configure.add_argument("--url", required=True, help="Jira base URL")
    configure.add_argument("--token", required=True, help="API token")
    configure.add_argument("--account-id", default="", help="Tempo username (default: detect)")
    configure.add_argument(
        "--threshold",
        type=int,
        default=DEFAULT_WARNING_THRESHOLD_DAYS,
        help="Days without a worklog before warning (default: %(default)s)",
    )
    configure.add_argument("--test", action="store_true", help="Test the connection before saving")

    sub.add_parser("test-connection", help="Test the stored credentials")

    detect = sub.add_parser("detect-user", help="Show the Jira user the token belongs to")
    detect.add_argument("--url", help="Jira base URL (default: stored)")
    detect.add_argument("--token", help="API token (default: stored)")

    sub.add_parser("clear", help="Delete stored credentials")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    store = JsonCredentialStore(config_path(args.config))
    client = TempoClient()

    command = args.command or "status"
    if command == "status":
        return cmd_status(store, client)
    if command == "watch":
        return cmd_watch(store, client, args.poll)
    if command == "configure":
        return cmd_configure(store, client, args)
    if command == "test-connection":
        return cmd_test_connection(store, client)
    if command == "detect-user":
        return cmd_detect_user(store, client, args)
    if command == "clear":
        return cmd_clear(store)
    return 2


if __name__ == "__main__":
    exit(main())
