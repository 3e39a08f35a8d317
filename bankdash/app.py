"""
bankdash — command-line entry point.

Loads config, builds a BankingClient, and runs one dashboard action per
invocation.  The session token is kept on disk between runs, so
``bankdash login`` once and the other commands reuse it until logout or
until the server rejects it.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml

from bankdash.client import BankingClient
from bankdash.errors import BankdashError
from bankdash.models import Account, ClientConfig, Notification, TransactionRecord
from bankdash.notifications import CallbackSink

logger = logging.getLogger("bankdash")


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------

def _resolve_env(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} placeholders in config values."""
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        env_key = value[2:-1]
        return os.environ.get(env_key, value)
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env(v) for v in value]
    return value


def default_storage_path() -> Path:
    """Token file location (XDG compliant)."""
    xdg_config_home = os.getenv("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    return Path(xdg_config_home) / "bankdash" / "session.json"


def load_config(config_path: str | Path | None = None) -> ClientConfig:
    """
    Load client config from a YAML file.  Falls back to env vars and defaults.
    """
    path = Path(config_path) if config_path else Path("bankdash.yaml")

    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        raw = _resolve_env(raw)
        return ClientConfig.model_validate(raw)

    logger.debug("No config file found at %s, using defaults + env vars.", path)
    raw = {
        "base_url": os.getenv("BANKDASH_BASE_URL"),
        "storage_path": os.getenv("BANKDASH_STORAGE_PATH"),
        "poll_interval": os.getenv("BANKDASH_POLL_INTERVAL"),
        "log_level": os.getenv("BANKDASH_LOG_LEVEL"),
    }
    return ClientConfig.model_validate({k: v for k, v in raw.items() if v is not None})


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

def _print_notification(notification: Notification) -> None:
    print(f"[{notification.level.value}] {notification.message}", file=sys.stderr)


def format_account(account: Account) -> str:
    account_type = getattr(account.account_type, "value", account.account_type)
    return f"{account.id:>6}  {account_type:<10} {account.account_number:<20} {account.balance:>14,.2f}"


def format_record(record: TransactionRecord, account_id: str) -> str:
    created = record.created_at.strftime("%Y-%m-%d %H:%M") if record.created_at else "-"
    kind = getattr(record.transaction_type, "value", record.transaction_type)
    amount = f"{record.direction(account_id)}{record.amount:,.2f}"
    return f"{created}  {kind:<10} {amount:>14}  {record.status.value:<9} {record.description or ''}"


def print_accounts(client: BankingClient) -> None:
    accounts = client.accounts.accounts
    if not accounts:
        print("No accounts found. Create your first account with 'bankdash open-account'.")
        return
    for account in accounts:
        print(format_account(account))
    summary = client.accounts.summary()
    print(f"\nTotal balance: {summary.total_balance:,.2f} across {summary.account_count} account(s)")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _run(args: argparse.Namespace, config: ClientConfig) -> int:
    async with BankingClient(config, sink=CallbackSink(_print_notification)) as client:
        if args.command == "login":
            password = args.password or getpass.getpass("Password: ")
            await client.login(args.username, password)
            print_accounts(client)
            return 0

        if args.command == "signup":
            password = getpass.getpass("Password: ")
            await client.session.signup(
                args.first_name, args.last_name, args.username, args.email, password,
                phone=args.phone,
            )
            return 0

        if args.command == "logout":
            client.logout()
            print("Logged out.", file=sys.stderr)
            return 0

        if await client.startup() is None:
            print("Not logged in. Run 'bankdash login <username>' first.", file=sys.stderr)
            return 1

        if args.command == "accounts":
            print_accounts(client)
        elif args.command == "open-account":
            await client.accounts.create_account(args.account_type)
            print_accounts(client)
        elif args.command == "deposit":
            await client.transactions.deposit(args.account, args.amount, args.description)
            print_accounts(client)
        elif args.command == "withdraw":
            await client.transactions.withdraw(args.account, args.amount, args.description)
            print_accounts(client)
        elif args.command == "transfer":
            await client.transactions.transfer(args.source, args.destination, args.amount, args.description)
            print_accounts(client)
        elif args.command == "history":
            records = await client.transactions.history(args.account)
            if not records:
                print("No transactions found")
            for record in records:
                print(format_record(record, args.account))
        elif args.command == "watch":
            await _watch(client)
        return 0


async def _watch(client: BankingClient) -> None:
    """Print balances whenever the background refresh lands new data."""
    print_accounts(client)
    seen = client.accounts.last_refreshed_at
    while client.session.is_authenticated:
        await asyncio.sleep(1)
        if client.accounts.last_refreshed_at != seen:
            seen = client.accounts.last_refreshed_at
            print()
            print_accounts(client)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bankdash",
        description="Banking dashboard client: accounts, deposits, withdrawals and transfers",
    )
    parser.add_argument("--config", type=Path, help="Path to bankdash.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Log in and remember the session")
    p.add_argument("username")
    p.add_argument("--password", help="Prompted for when omitted")

    p = sub.add_parser("signup", help="Register a new user")
    p.add_argument("--first-name", required=True)
    p.add_argument("--last-name", required=True)
    p.add_argument("--username", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--phone")

    sub.add_parser("logout", help="Forget the stored session")
    sub.add_parser("accounts", help="List accounts and balances")

    p = sub.add_parser("open-account", help="Open a new account")
    p.add_argument("account_type", help="SAVINGS, CHECKING or CREDIT")

    for name, help_text in (("deposit", "Deposit money"), ("withdraw", "Withdraw money")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("account", help="Account id")
        p.add_argument("amount")
        p.add_argument("-d", "--description")

    p = sub.add_parser("transfer", help="Move money between accounts")
    p.add_argument("source", help="Source account id")
    p.add_argument("destination", help="Destination account id")
    p.add_argument("amount")
    p.add_argument("-d", "--description")

    p = sub.add_parser("history", help="Show an account's transactions")
    p.add_argument("account", help="Account id")

    sub.add_parser("watch", help="Keep balances on screen, refreshing in the background")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one command from the command line."""
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    if config.storage_path is None:
        config = config.model_copy(update={"storage_path": str(default_storage_path())})

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        return asyncio.run(_run(args, config))
    except BankdashError:
        # already reported through the notification sink
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
