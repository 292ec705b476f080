"""
Tests for the text-facing parts of the engine: the direct command
matcher, the model response interpreter, the prompt builder and the
confirm / edit token helpers.
"""

from datetime import date

import pytest

from ledger_assistant.agents import PromptBuilder, ResponseInterpreter, strip_code_fences
from ledger_assistant.agents.interpreter import EMPTY_REPLY
from ledger_assistant.commands import DirectCommandMatcher, normalize_command_text
from ledger_assistant.engine import control_token, parse_edit
from ledger_assistant.models.actions import ActionKind
from ledger_assistant.models.conversation import (
    CollectingReply,
    ConversationContext,
    ConversationReply,
    ExecuteReply,
    Message,
    MessageRole,
    Phase,
    PreviewReply,
    ReplySource,
)
from ledger_assistant.models.ledger import Customer, ReferenceSnapshot


class TestDirectCommandMatcher:
    """Fixed grammar, no model."""

    matcher = DirectCommandMatcher()

    @pytest.mark.parametrize("text, ref", [
        ("send invoice INV-0001", "INV-0001"),
        ("Send Invoice inv-0001.", "INV-0001"),
        ("send   invoice #42", "42"),
        ("send invoice inv7", "INV7"),
    ])
    def test_send_invoice(self, text, ref):
        reply = self.matcher.match(text)
        assert isinstance(reply, ExecuteReply)
        assert reply.action == ActionKind.SEND_INVOICE
        assert reply.data == {"invoice_ref": ref}
        assert reply.source == ReplySource.DIRECT

    def test_send_invoice_to_person_is_not_a_command(self):
        assert self.matcher.match("send invoice to John") is None

    def test_get_invoice(self):
        reply = self.matcher.match("show invoice INV-0003")
        assert reply.action == ActionKind.GET_INVOICE

    def test_edit_invoice_opens_preview(self):
        reply = self.matcher.match("edit invoice INV-0003")
        assert isinstance(reply, PreviewReply)
        assert reply.preview_data == {"invoice_ref": "INV-0003"}

    @pytest.mark.parametrize("text, data", [
        ("list invoices", {}),
        ("show all invoices", {}),
        ("list paid invoices", {"status": "paid"}),
        ("list invoices for John Smith", {"customer_name": "John Smith"}),
        ("show overdue invoices", None),
    ])
    def test_list_invoices(self, text, data):
        reply = self.matcher.match(text)
        if data is None:
            assert reply is None
        else:
            assert reply.action == ActionKind.LIST_INVOICES
            assert reply.data == data

    def test_list_bills(self):
        reply = self.matcher.match("list open bills from Acme")
        assert reply.action == ActionKind.LIST_BILLS
        assert reply.data == {"status": "open", "vendor_name": "Acme"}

    @pytest.mark.parametrize("text", ["", "   ", "hello", "create an invoice for John"])
    def test_no_match(self, text):
        assert self.matcher.match(text) is None

    def test_matching_is_pure(self):
        first = self.matcher.match("list invoices for John")
        second = self.matcher.match("list invoices for John")
        assert first == second

    def test_normalize_command_text(self):
        assert normalize_command_text("  list \t invoices !! ") == "list invoices"


class TestResponseInterpreter:
    """Model output is untrusted; only well-formed replies survive."""

    interpreter = ResponseInterpreter(max_response_chars=100)

    def test_collecting(self):
        reply = self.interpreter.interpret(
            '{"mode": "collecting", "action": "create_invoice", '
            '"collected": {"customer_id": "x"}, "missing": ["lines"], "response": "For what?"}'
        )
        assert isinstance(reply, CollectingReply)
        assert reply.collected == {"customer_id": "x"}
        assert reply.response == "For what?"
        assert reply.source == ReplySource.MODEL

    def test_code_fences_stripped(self):
        reply = self.interpreter.interpret(
            '```json\n{"mode": "preview", "action": "create_bill", "preview_data": {}}\n```'
        )
        assert isinstance(reply, PreviewReply)
        assert reply.action == ActionKind.CREATE_BILL

    def test_json_inside_prose(self):
        reply = self.interpreter.interpret(
            'Sure! {"mode": "execute", "action": "list_bills", "data": {"status": "open"}} Done.'
        )
        assert isinstance(reply, ExecuteReply)
        assert reply.data == {"status": "open"}

    def test_missing_mode_with_data_is_execute(self):
        reply = self.interpreter.interpret('{"action": "LIST_INVOICES", "data": {}}')
        assert isinstance(reply, ExecuteReply)
        assert reply.action == ActionKind.LIST_INVOICES

    def test_null_collections_defaulted(self):
        reply = self.interpreter.interpret(
            '{"mode": "collecting", "action": "create_invoice", "collected": null, "missing": null}'
        )
        assert isinstance(reply, CollectingReply)
        assert reply.collected == {}
        assert reply.missing == []

    def test_unknown_action_is_conversation(self):
        reply = self.interpreter.interpret(
            '{"mode": "execute", "action": "drop_tables", "data": {}, "response": "Done"}'
        )
        assert isinstance(reply, ConversationReply)
        assert reply.response == "Done"

    def test_wrong_types_are_conversation(self):
        reply = self.interpreter.interpret(
            '{"mode": "execute", "action": "list_bills", "data": "everything"}'
        )
        assert isinstance(reply, ConversationReply)

    def test_plain_text(self):
        reply = self.interpreter.interpret("Hello! How can I help?")
        assert reply == ConversationReply(response="Hello! How can I help?")

    def test_empty_text(self):
        assert self.interpreter.interpret("  ").response == EMPTY_REPLY

    def test_long_text_capped(self):
        reply = self.interpreter.interpret("x" * 500)
        assert len(reply.response) == 100
        assert reply.response.endswith("...")

    def test_strip_code_fences_passthrough(self):
        assert strip_code_fences("no fences") == "no fences"


class TestPromptBuilder:
    """The instruction is deterministic and carries the context."""

    snapshot = ReferenceSnapshot(
        user_id="u",
        customers=[Customer(user_id="u", name=f"Customer {i}") for i in range(5)],
    )

    def test_deterministic(self):
        builder = PromptBuilder()
        first = builder.build(self.snapshot, None, [], date(2025, 1, 15), message="hi")
        second = builder.build(self.snapshot, None, [], date(2025, 1, 15), message="hi")
        assert first == second
        assert "2025-01-15" in first.system
        assert "create_invoice" in first.system
        assert "create_customer or create_vendor first" in first.system
        assert "create_transaction | description, lines, transaction_date" in first.system

    def test_sample_limit(self):
        instruction = PromptBuilder(sample_limit=2).build(self.snapshot, None, [], date(2025, 1, 15))
        assert "Customer 1" in instruction.system
        assert "Customer 2" not in instruction.system

    def test_history_window_and_current_message(self):
        history = [
            Message(conversation_id="c", user_id="u", role=MessageRole.USER, content=f"m{i}")
            for i in range(6)
        ]
        instruction = PromptBuilder(history_window=3).build(
            self.snapshot, None, history, date(2025, 1, 15), message="now"
        )
        assert [t.content for t in instruction.turns] == ["m3", "m4", "m5", "now"]

    def test_active_context(self):
        context = ConversationContext(
            conversation_id="c",
            user_id="u",
            phase=Phase.COLLECTING,
            pending_action=ActionKind.CREATE_BILL,
            collected_data={"bill_date": "2025-01-01"},
            missing_fields=["vendor_id"],
        )
        instruction = PromptBuilder().build(self.snapshot, context, [], date(2025, 1, 15))
        assert "Action: create_bill" in instruction.system
        assert '"vendor_id"' in instruction.system


class TestControlTokens:

    @pytest.mark.parametrize("text, token", [
        ("confirm", "confirm"),
        ("YES", "confirm"),
        ("ok!", "confirm"),
        ("approve", "confirm"),
        ("Cancel.", "cancel"),
        ("abort", "cancel"),
        ("yes please", None),
        ("ok, but change the date", None),
    ])
    def test_exact_tokens(self, text, token):
        assert control_token(text) == token

    def test_parse_edit(self):
        assert parse_edit('{"due_date": "2025-03-01"}') == {"due_date": "2025-03-01"}
        assert parse_edit("[1, 2]") is None
        assert parse_edit("{not json") is None
        assert parse_edit("change the date") is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
