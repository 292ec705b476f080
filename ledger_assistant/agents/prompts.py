"""
Context-Aware Prompt Builder

Composes the instruction sent to the language model from four inputs:
the user's reference data, the active conversation context, the recent
chat history and today's date.

CRITICAL BOUNDARIES the prompt states to the model:
- ONLY use identifiers that appear in the reference data
- NEVER compute totals; the engine does that
- NEVER execute money-moving actions; propose a preview and wait

The model is a TRANSLATOR, not an ORACLE. The engine re-checks every
one of these boundaries after the reply comes back, so the prompt is
guidance, not enforcement.

Building is deterministic: the same inputs always produce the same text.
"""

import json
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from ledger_assistant.models.actions import ACTION_SCHEMA
from ledger_assistant.models.conversation import ConversationContext, Message, MessageRole
from ledger_assistant.models.ledger import ReferenceSnapshot


@dataclass(frozen=True)
class Turn:
    role: MessageRole
    content: str


@dataclass(frozen=True)
class Instruction:
    """System text plus the ordered conversation turns, most recent last."""

    system: str
    turns: list[Turn] = field(default_factory=list)


REPLY_SHAPES = """\
Reply with exactly ONE JSON object and nothing else, in one of these shapes:

1. Still gathering required fields:
{"mode": "collecting", "action": "<action>", "collected": {<fields gathered so far>}, "missing": [<required fields still needed>], "response": "<question for the user>"}

2. All required fields known - show the user what will happen:
{"mode": "preview", "action": "<action>", "preview_data": {<all fields>}, "response": "<short summary, ask to confirm>"}

3. Read-only or no-confirmation action with everything known:
{"mode": "execute", "action": "<action>", "data": {<all fields>}, "response": "<short message>"}

For anything else (greetings, questions, explanations) reply in plain text without JSON."""

RULES = """\
# RULES
1. ONLY use customer, vendor, account and product ids from the reference data below - NEVER invent ids.
2. If the user names a customer or vendor that is not listed, propose create_customer or create_vendor first.
3. Ask for missing required fields with "collecting"; ask for one or two fields at a time.
4. Actions marked confirm=yes MUST go through "preview". NEVER use "execute" for them.
5. When the conversation is in preview and the user changes a value, reply with an updated "preview".
6. Do not compute subtotals, tax or totals - the system computes them from the lines.
7. Dates are YYYY-MM-DD. Resolve relative dates ("today", "in 30 days") against today's date.
8. If no due date is given for an invoice or bill, use 30 days after its date.
9. Money amounts are plain numbers without currency symbols."""

LINE_SHAPE = (
    'For invoices and bills each entry of "lines" is {"description": str, "quantity": number, '
    '"unit_price": number, "tax_rate": percent (optional), '
    '"account_id": uuid (optional), "product_id": uuid (optional)}. '
    'A line with a product_id and no unit_price uses the product price.'
    ' For create_transaction each line is {"account_id": uuid, "debit": number, '
    '"credit": number, "description": str (optional)} with exactly one of debit or credit, '
    'and total debits must equal total credits.'
)


class PromptBuilder:
    """
    Builds the model instruction for one turn.

    Args:
        history_window: How many recent messages to include
        sample_limit: Max records per reference list embedded in the prompt
    """

    def __init__(self, history_window: int = 10, sample_limit: int = 25):
        self._history_window = history_window
        self._sample_limit = sample_limit

    def build(
        self,
        snapshot: ReferenceSnapshot,
        context: Optional[ConversationContext],
        history: list[Message],
        today: date,
        message: Optional[str] = None,
    ) -> Instruction:
        """
        Compose the instruction.

        `history` is expected oldest first. `message` is the current user
        message; it is appended when history does not already end with it.
        """
        sections = [
            "You are a bookkeeping assistant for a small business. You turn the "
            "user's requests into structured accounting actions on a double-entry ledger.",
            f"Today's date: {today.isoformat()}",
            self._actions_section(),
            REPLY_SHAPES,
            RULES,
            self._reference_section(snapshot),
            self._context_section(context),
        ]
        system = "\n\n".join(sections)

        recent = history[-self._history_window:] if self._history_window > 0 else []
        turns = [Turn(role=m.role, content=m.content) for m in recent]
        if message is not None and not (
            turns and turns[-1].role == MessageRole.USER and turns[-1].content == message
        ):
            turns.append(Turn(role=MessageRole.USER, content=message))

        return Instruction(system=system, turns=turns)

    def _actions_section(self) -> str:
        lines = ["# ACTIONS", "action | required | optional | confirm | what it does"]
        for spec in ACTION_SCHEMA.values():
            lines.append(
                f"{spec.kind.value} | {', '.join(spec.required_fields) or '-'} | "
                f"{', '.join(spec.optional_fields) or '-'} | "
                f"{'yes' if spec.requires_confirmation else 'no'} | {spec.summary}"
            )
        lines.append("")
        lines.append(LINE_SHAPE)
        return "\n".join(lines)

    def _reference_section(self, snapshot: ReferenceSnapshot) -> str:
        limit = self._sample_limit
        accounts = [
            {"id": str(a.id), "code": a.code, "name": a.name, "type": a.account_type.value}
            for a in snapshot.accounts[:limit]
        ]
        customers = [
            {"id": str(c.id), "name": c.name, "company_name": c.company_name, "email": c.email}
            for c in snapshot.customers[:limit]
        ]
        vendors = [
            {"id": str(v.id), "name": v.name, "company_name": v.company_name}
            for v in snapshot.vendors[:limit]
        ]
        products = [
            {"id": str(p.id), "name": p.name, "unit_price": str(p.unit_price)}
            for p in snapshot.products[:limit]
        ]
        return "\n".join([
            "# REFERENCE DATA",
            f"Accounts: {json.dumps(accounts)}",
            f"Customers: {json.dumps(customers)}",
            f"Vendors: {json.dumps(vendors)}",
            f"Products: {json.dumps(products)}",
        ])

    def _context_section(self, context: Optional[ConversationContext]) -> str:
        if context is None:
            return "# ACTIVE CONTEXT\nNone. Treat the message as a new request."
        return "\n".join([
            "# ACTIVE CONTEXT",
            f"Phase: {context.phase.value}",
            f"Action: {context.pending_action.value}",
            f"Collected so far: {json.dumps(context.collected_data, default=str)}",
            f"Still missing: {json.dumps(context.missing_fields)}",
            "Continue this action unless the user clearly asks for something else.",
        ])
