"""
Transaction history CLI commands.

Development harness that drives the controller against the mock
transport: list pages, poll a transaction's status, create the
preference table.
"""

import asyncio
import sys
from typing import Optional

import structlog

from txn_history.core.config import get_settings
from txn_history.core.logging import configure_logging
from txn_history.db.init import create_tables
from txn_history.transactions.clients.mock_client import MockTransactionClient
from txn_history.transactions.config import get_history_config
from txn_history.transactions.controller import TransactionHistory
from txn_history.transactions.models import CachedPage, ListId
from txn_history.transactions.preferences import DatabasePreferenceStore, PreferenceStore

logger = structlog.get_logger(__name__)


def print_page(list_id: ListId, page: CachedPage):
    """Pretty print one cached list."""
    print(f"\n=== {list_id.value.title()} transactions ===\n")
    print(f"Status: {page.status.value}")
    if page.error is not None:
        print(f"Error: {page.error}")
        return
    if page.payload is None:
        return

    payload = page.payload
    print(f"Cached: {len(payload.items)} of {payload.total_count}")
    print(f"More pages: {payload.has_more}")
    for key, value in payload.auxiliary_totals.items():
        print(f"{key}: {value}")
    print()
    for txn in payload.items:
        payee = txn.payee_info.name or "-"
        print(f"{txn.id}  {txn.created_at:%Y-%m-%d %H:%M}  {txn.status:<10} {txn.amount} {payee}")
    print()


async def list_command(list_name: str = "main", pages: int = 1) -> int:
    """Load ``pages`` pages of a list and print them."""
    list_id = ListId(list_name)
    async with TransactionHistory(MockTransactionClient(), config=get_history_config()) as history:
        page = await history.get_list(list_id)
        for _ in range(pages - 1):
            if not await history.load_more(list_id):
                break
        page = history.store.get_snapshot(list_id)
    print_page(list_id, page)
    return 0


async def poll_command(transaction_id: str, preferences: Optional[PreferenceStore] = None) -> int:
    """Poll one mock transaction's status through the rate limiter."""
    if preferences is None:
        await create_tables()
        preferences = DatabasePreferenceStore()

    client = MockTransactionClient()
    transaction = next((t for t in client.transactions if t.id == transaction_id), None)
    if transaction is None:
        print(f"Unknown transaction: {transaction_id}")
        return 1

    async with TransactionHistory(
        client, preferences=preferences, config=get_history_config()
    ) as history:
        await history.get_list(ListId.MAIN)
        outcome = await history.poll_status(transaction)

    print(f"\nOutcome: {outcome.kind.value}")
    if outcome.message:
        print(f"Message: {outcome.message}")
    if outcome.transaction is not None:
        print(f"Status: {outcome.transaction.status}")
    return 0


async def init_db_command() -> int:
    await create_tables()
    print("Preference table ready.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    args = list(sys.argv[1:] if argv is None else argv)
    settings = get_settings()
    configure_logging(env=settings.ENV, debug=settings.DEBUG)

    if not args:
        print("Usage: python -m txn_history.transactions.cli <command> [options]")
        print("\nCommands:")
        print("  list [main|circle] [pages]   Load and print a list")
        print("  poll <transaction_id>        Poll a transaction's status")
        print("  init-db                      Create the preference table")
        return 1

    command = args[0]
    try:
        if command == "list":
            list_name = args[1] if len(args) > 1 else "main"
            pages = int(args[2]) if len(args) > 2 else 1
            return asyncio.run(list_command(list_name, pages))
        elif command == "poll" and len(args) > 1:
            return asyncio.run(poll_command(args[1]))
        elif command == "init-db":
            return asyncio.run(init_db_command())
        else:
            print(f"Unknown command: {' '.join(args)}")
            return 1
    except ValueError as e:
        print(f"Invalid arguments: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
