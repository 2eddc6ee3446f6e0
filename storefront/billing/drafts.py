"""
storefront/billing/drafts.py
----------------------------
Session-backed store of open invoice drafts, one per billing "tab".

Structure stored in Flask session under key 'invoice_drafts':
{
    "<draft_id>": {
        "seq":   int,    ← opening order (session JSON does not keep key order)
        "draft": { ...InvoiceDraft.to_dict()... }
    },
    ...
}

Drafts are addressed by id, never by "whichever tab is on screen", so an
edit always lands on the draft it was meant for. Money is kept as strings
in the session, same as the rest of the draft serialisation.
"""
import uuid

from flask import session, current_app

from storefront.billing.draft import InvoiceDraft
from storefront.billing.errors import DraftNotFoundError


DRAFTS_KEY = 'invoice_drafts'


def _store() -> dict:
    return session.get(DRAFTS_KEY, {})


def _write(store: dict) -> None:
    session[DRAFTS_KEY] = store
    session.modified = True


def _missing(draft_id):
    return DraftNotFoundError(f'Invoice draft "{draft_id}" not found.', {'draft_id': draft_id})


# ── Read ──────────────────────────────────────────────────────────

def get_draft(draft_id: str) -> InvoiceDraft:
    entry = _store().get(draft_id)
    if entry is None:
        raise _missing(draft_id)
    return InvoiceDraft.from_dict(entry['draft'])


def list_drafts() -> list:
    """[{'id', 'label'}] in the order the tabs were opened."""
    entries = sorted(_store().items(), key=lambda item: item[1]['seq'])
    return [
        {'id': draft_id, 'label': InvoiceDraft.from_dict(entry['draft']).label}
        for draft_id, entry in entries
    ]


# ── Write ─────────────────────────────────────────────────────────

def create_draft() -> tuple:
    """Open a new empty draft with the configured default tax. Returns (id, draft)."""
    draft = InvoiceDraft()
    draft.set_tax(
        current_app.config.get('DEFAULT_TAX_TYPE', 'CGST_SGST'),
        current_app.config.get('DEFAULT_TAX_PERCENT', 0),
    )
    draft_id = uuid.uuid4().hex[:12]

    store = _store()
    seq = max((entry['seq'] for entry in store.values()), default=0) + 1
    store[draft_id] = {'seq': seq, 'draft': draft.to_dict()}
    _write(store)
    return draft_id, draft


def save_draft(draft_id: str, draft: InvoiceDraft) -> None:
    store = _store()
    if draft_id not in store:
        raise _missing(draft_id)
    store[draft_id]['draft'] = draft.to_dict()
    _write(store)


def dispose_draft(draft_id: str) -> None:
    """Drop a draft. Unknown ids are ignored (closing a tab twice is harmless)."""
    store = _store()
    if store.pop(draft_id, None) is not None:
        _write(store)
