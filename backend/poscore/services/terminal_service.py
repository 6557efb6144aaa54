"""
Terminal Management Service

Terminals must exist before sessions can be opened. Each terminal binds at
most one open or suspended session at a time (current_session_id).

DESIGN PRINCIPLES:
- Terminals are never deleted (preserve historical data)
- Inactive terminals cannot open new sessions
- A bound terminal cannot be deactivated
"""

from __future__ import annotations

from ..extensions import db
from ..models import Terminal
from ..validation import ConflictError, NotFoundError, StateTransitionError, require_text
from .concurrency import lock_for_update, run_with_retry


def create_terminal(
    terminal_code: str,
    name: str,
    location: str | None = None,
) -> Terminal:
    """
    Create a new POS terminal.

    Args:
        terminal_code: Unique identifier (e.g., "TILL-01", "FRONT")
        name: Display name
        location: Physical location in store
    """
    terminal_code = require_text(terminal_code, "terminal_code")
    name = require_text(name, "name")

    def _op():
        existing = db.session.query(Terminal).filter_by(terminal_code=terminal_code).first()
        if existing:
            raise ConflictError(f"Terminal '{terminal_code}' already exists")

        terminal = Terminal(
            terminal_code=terminal_code,
            name=name,
            location=location,
            is_active=True,
        )
        db.session.add(terminal)
        db.session.commit()
        return terminal

    return run_with_retry(_op)


def get_terminal(terminal_id: int) -> Terminal:
    terminal = db.session.get(Terminal, terminal_id)
    if not terminal:
        raise NotFoundError(f"Terminal {terminal_id} not found")
    return terminal


def lock_terminal(terminal_id: int) -> Terminal:
    """Per-terminal lock used to serialize session binding and checkout."""
    terminal = lock_for_update(db.session.query(Terminal).filter_by(id=terminal_id)).first()
    if not terminal:
        raise NotFoundError(f"Terminal {terminal_id} not found")
    return terminal


def get_active_terminals() -> list[Terminal]:
    """Get all active terminals."""
    return db.session.query(Terminal).filter_by(
        is_active=True
    ).order_by(Terminal.terminal_code).all()


def deactivate_terminal(terminal_id: int) -> Terminal:
    """Deactivate a terminal (soft delete)."""
    def _op():
        terminal = lock_terminal(terminal_id)
        if terminal.current_session_id is not None:
            raise StateTransitionError(
                "Cannot deactivate terminal with an open session. Close the session first.",
                details={"session_id": terminal.current_session_id},
            )
        terminal.is_active = False
        db.session.commit()
        return terminal

    return run_with_retry(_op)
