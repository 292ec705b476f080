"""
Ledger Assistant - Source Package

A conversational front-end to a double-entry bookkeeping ledger.
Users describe what they want in plain language; the assistant works out
the accounting action, asks for what is missing, shows a preview and only
then posts a balanced journal entry.

DESIGN PRINCIPLES:
1. AI suggests → Human confirms → System verifies
2. The model's output is untrusted input
3. No journal entry is written unless debits equal credits
4. Nothing is half-committed
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Assistant Team"
