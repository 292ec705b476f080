"""
Shared fixtures for the Ledger Assistant tests.

No network: the model is a scripted fake and every store is in-memory.
"""

import asyncio
import json
import os
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

import pytest

os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ.setdefault("ENGINE_STORAGE_BACKEND", "memory")

from ledger_assistant.agents import Instruction, ModelClient  # noqa: E402
from ledger_assistant.config import AccountCodeSettings, get_settings  # noqa: E402
from ledger_assistant.ledger import ActionExecutor, PostingEngine  # noqa: E402
from ledger_assistant.models.conversation import EngineRequest  # noqa: E402
from ledger_assistant.models.ledger import (  # noqa: E402
    Account,
    AccountType,
    Customer,
    Product,
    Vendor,
)
from ledger_assistant.orchestrator import AppComponents, create_app_components  # noqa: E402
from ledger_assistant.services.storage import InMemoryLedgerStore  # noqa: E402


USER_ID = "user-1"
TODAY = date(2025, 1, 15)

STANDARD_ACCOUNTS = [
    ("1000", "Cash", AccountType.ASSET),
    ("1200", "Accounts Receivable", AccountType.ASSET),
    ("2000", "Accounts Payable", AccountType.LIABILITY),
    ("2100", "Sales Tax Payable", AccountType.LIABILITY),
    ("4000", "Revenue", AccountType.REVENUE),
    ("4100", "Sales Discounts", AccountType.REVENUE),
    ("5000", "Expenses", AccountType.EXPENSE),
]


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


@dataclass
class SeededLedger:
    store: InMemoryLedgerStore
    accounts: dict[str, Account]
    john: Customer
    vendor: Vendor
    product: Product


def seed_ledger(user_id: str = USER_ID, skip_codes: tuple = ()) -> SeededLedger:
    store = InMemoryLedgerStore()
    accounts = {}
    for code, name, account_type in STANDARD_ACCOUNTS:
        if code in skip_codes:
            continue
        accounts[code] = store.add_account(
            Account(user_id=user_id, code=code, name=name, account_type=account_type)
        )
    john = store.add_customer(Customer(user_id=user_id, name="John", email="john@example.com"))
    vendor = store.add_vendor(Vendor(user_id=user_id, name="Acme Supplies"))
    product = store.add_product(Product(user_id=user_id, name="Consulting hour", unit_price="150.00"))
    return SeededLedger(store=store, accounts=accounts, john=john, vendor=vendor, product=product)


class FakeModelClient(ModelClient):
    """
    Scripted model: returns the queued replies in order.

    A queued exception is raised instead of returned. Dicts are sent
    as JSON text.
    """

    def __init__(self, replies: Optional[list[Union[str, dict, Exception]]] = None):
        self.replies = list(replies or [])
        self.instructions: list[Instruction] = []
        self.models: list[Optional[str]] = []

    def queue(self, *replies: Union[str, dict, Exception]) -> None:
        self.replies.extend(replies)

    async def complete(self, instruction: Instruction, model: Optional[str] = None) -> str:
        self.instructions.append(instruction)
        self.models.append(model)
        if not self.replies:
            raise AssertionError("Model called with no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply

    @property
    def calls(self) -> int:
        return len(self.instructions)


@dataclass
class Harness:
    """An engine wired to a seeded in-memory ledger and a fake model."""

    components: AppComponents
    seeded: SeededLedger
    model: FakeModelClient
    conversation_id: str = "conv-1"
    user_id: str = USER_ID

    async def say(self, text: str, conversation_id: Optional[str] = None, user_id: Optional[str] = None):
        return await self.components.engine.handle(
            EngineRequest(
                message=text,
                conversation_id=conversation_id or self.conversation_id,
                user_id=self.user_id if user_id is None else user_id,
            ),
            today=TODAY,
        )

    async def context(self):
        return await self.components.contexts.load(self.conversation_id)

    def events(self) -> list:
        return [e.event_type.value for e in self.components.audit_storage.events]


@pytest.fixture
def seeded() -> SeededLedger:
    return seed_ledger()


@pytest.fixture
def fake_model() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture
def harness(seeded, fake_model) -> Harness:
    get_settings.cache_clear()
    components = create_app_components(model_client=fake_model, ledger=seeded.store)
    return Harness(components=components, seeded=seeded, model=fake_model)


@pytest.fixture
def executor(seeded) -> ActionExecutor:
    return ActionExecutor(seeded.store, PostingEngine(AccountCodeSettings()))
