"""
Repository pattern for data access.

SQLite and in-memory implementations of the model-card and disclosure
stores consumed by the disclosure recorder. SQLite errors surface as
PersistenceError.
"""

import dataclasses
import json
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ai_provider_guard.core.errors import PersistenceError

from .db import DEFAULT_DB_PATH, get_connection
from .models import ModelCard, UsageDisclosure

DISCLOSURE_COLUMNS = (
    "id, request_id, user_id, action_type, model_provider, model_name, "
    "model_card_id, purpose_description, ai_contribution, user_consented, "
    "consented_at, human_oversight, cost_estimate, data_used, tokens_used, "
    "guardrail_finding_count, served_from_cache, created_at"
)

MODEL_CARD_COLUMNS = (
    "id, model_provider, model_name, model_version, description, intended_use, "
    "limitations, status, published_at, last_reviewed_at"
)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the model_card and usage_disclosure tables if they don't exist.

    usage_disclosure is an append-only ledger. No UPDATE or DELETE
    operations should ever be performed on it.

    Args:
        db_path: Path to SQLite database file

    Raises:
        PersistenceError: If the database cannot be created
    """
    try:
        _create_tables(db_path)
    except sqlite3.Error as e:
        raise PersistenceError(f"Failed to initialize schema at {db_path}: {e}") from e


def _create_tables(db_path: str) -> None:
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS model_card (
                id TEXT PRIMARY KEY,
                model_provider TEXT NOT NULL,
                model_name TEXT NOT NULL,
                model_version TEXT NOT NULL,
                description TEXT NOT NULL,
                intended_use TEXT NOT NULL,
                limitations TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active',
                published_at TEXT,
                last_reviewed_at TEXT,
                UNIQUE (model_provider, model_name, model_version)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_disclosure (
                id TEXT PRIMARY KEY,
                request_id TEXT NOT NULL UNIQUE,
                user_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                model_provider TEXT NOT NULL,
                model_name TEXT NOT NULL,
                model_card_id TEXT,
                purpose_description TEXT NOT NULL,
                ai_contribution TEXT NOT NULL,
                user_consented INTEGER NOT NULL,
                consented_at TEXT,
                human_oversight INTEGER NOT NULL,
                cost_estimate TEXT NOT NULL,
                data_used TEXT NOT NULL DEFAULT '[]',
                tokens_used INTEGER NOT NULL DEFAULT 0,
                guardrail_finding_count INTEGER NOT NULL DEFAULT 0,
                served_from_cache INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def _row_to_disclosure(row) -> UsageDisclosure:
    return UsageDisclosure(
        id=row[0],
        request_id=row[1],
        user_id=row[2],
        action_type=row[3],
        model_provider=row[4],
        model_name=row[5],
        model_card_id=row[6],
        purpose_description=row[7],
        ai_contribution=row[8],
        user_consented=bool(row[9]),
        consented_at=_from_text(row[10]),
        human_oversight=bool(row[11]),
        cost_estimate=row[12],
        data_used=tuple(json.loads(row[13])),
        tokens_used=row[14],
        guardrail_finding_count=row[15],
        served_from_cache=bool(row[16]),
        created_at=datetime.fromisoformat(row[17]),
    )


def _row_to_model_card(row) -> ModelCard:
    return ModelCard(
        id=row[0],
        model_provider=row[1],
        model_name=row[2],
        model_version=row[3],
        description=row[4],
        intended_use=row[5],
        limitations=row[6],
        status=row[7],
        published_at=_from_text(row[8]),
        last_reviewed_at=_from_text(row[9]),
    )


class SqliteDisclosureStore:
    """Append-only disclosure ledger in SQLite.

    request_id is unique, so a retried insert for the same request is a no-op.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def insert(self, disclosure: UsageDisclosure) -> bool:
        """Insert a disclosure unless one exists for its request.

        Returns:
            True if a row was written, False if the request was already recorded

        Raises:
            PersistenceError: If the database write fails
        """
        try:
            conn = get_connection(self.db_path)
            try:
                cursor = conn.execute(
                    f"INSERT OR IGNORE INTO usage_disclosure ({DISCLOSURE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        disclosure.id,
                        disclosure.request_id,
                        disclosure.user_id,
                        disclosure.action_type,
                        disclosure.model_provider,
                        disclosure.model_name,
                        disclosure.model_card_id,
                        disclosure.purpose_description,
                        disclosure.ai_contribution,
                        int(disclosure.user_consented),
                        _to_text(disclosure.consented_at),
                        int(disclosure.human_oversight),
                        disclosure.cost_estimate,
                        json.dumps(list(disclosure.data_used)),
                        disclosure.tokens_used,
                        disclosure.guardrail_finding_count,
                        int(disclosure.served_from_cache),
                        disclosure.created_at.isoformat(),
                    ),
                )
                conn.commit()
                return cursor.rowcount == 1
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to record usage disclosure: {e}") from e

    def get_by_request_id(self, request_id: str) -> Optional[UsageDisclosure]:
        """Fetch the disclosure recorded for a request, if any."""
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    f"SELECT {DISCLOSURE_COLUMNS} FROM usage_disclosure WHERE request_id = ?",
                    (request_id,),
                ).fetchone()
                return _row_to_disclosure(row) if row else None
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to fetch usage disclosure: {e}") from e

    def list_for_user(self, user_id: str, limit: int = 100) -> List[UsageDisclosure]:
        """Disclosures for a user, newest first."""
        try:
            conn = get_connection(self.db_path)
            try:
                rows = conn.execute(
                    f"SELECT {DISCLOSURE_COLUMNS} FROM usage_disclosure "
                    "WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
                    (user_id, limit),
                ).fetchall()
                return [_row_to_disclosure(row) for row in rows]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to fetch usage disclosures: {e}") from e


class SqliteModelCardStore:
    """Model cards in SQLite. Read by the recorder, written by admin tooling."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def find(self, model_provider: str, model_name: str) -> Optional[ModelCard]:
        """Most recently published active card for a provider and model.

        Raises:
            PersistenceError: If the lookup fails
        """
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    f"SELECT {MODEL_CARD_COLUMNS} FROM model_card "
                    "WHERE model_provider = ? AND model_name = ? AND status = 'active' "
                    "ORDER BY published_at DESC LIMIT 1",
                    (model_provider, model_name),
                ).fetchone()
                return _row_to_model_card(row) if row else None
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to fetch model card: {e}") from e

    def upsert(self, card: ModelCard) -> ModelCard:
        """Create a card, or update the existing one for the same provider/model/version.

        Returns:
            The stored card (keeps the existing id on update)
        """
        try:
            conn = get_connection(self.db_path)
            try:
                existing = conn.execute(
                    "SELECT id FROM model_card "
                    "WHERE model_provider = ? AND model_name = ? AND model_version = ?",
                    (card.model_provider, card.model_name, card.model_version),
                ).fetchone()
                card_id = existing[0] if existing else card.id
                conn.execute(
                    f"INSERT OR REPLACE INTO model_card ({MODEL_CARD_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        card_id,
                        card.model_provider,
                        card.model_name,
                        card.model_version,
                        card.description,
                        card.intended_use,
                        card.limitations,
                        card.status,
                        _to_text(card.published_at),
                        _to_text(card.last_reviewed_at),
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to upsert model card: {e}") from e
        return self.find_by_id(card_id)

    def find_by_id(self, card_id: str) -> Optional[ModelCard]:
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    f"SELECT {MODEL_CARD_COLUMNS} FROM model_card WHERE id = ?", (card_id,)
                ).fetchone()
                return _row_to_model_card(row) if row else None
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to fetch model card: {e}") from e


class InMemoryDisclosureStore:
    """Process-local disclosure ledger, keyed by request id."""

    def __init__(self):
        self._by_request: Dict[str, UsageDisclosure] = {}
        self._lock = threading.Lock()

    def insert(self, disclosure: UsageDisclosure) -> bool:
        with self._lock:
            if disclosure.request_id in self._by_request:
                return False
            self._by_request[disclosure.request_id] = disclosure
            return True

    def get_by_request_id(self, request_id: str) -> Optional[UsageDisclosure]:
        with self._lock:
            return self._by_request.get(request_id)

    def list_for_user(self, user_id: str, limit: int = 100) -> List[UsageDisclosure]:
        with self._lock:
            matches = [d for d in self._by_request.values() if d.user_id == user_id]
        matches.sort(key=lambda d: d.created_at, reverse=True)
        return matches[:limit]

    def all(self) -> List[UsageDisclosure]:
        with self._lock:
            return list(self._by_request.values())


class InMemoryModelCardStore:
    """Process-local model cards."""

    def __init__(self, cards: Optional[List[ModelCard]] = None):
        self._cards: List[ModelCard] = list(cards or [])
        self._lock = threading.Lock()

    def find(self, model_provider: str, model_name: str) -> Optional[ModelCard]:
        with self._lock:
            matches = [
                c for c in self._cards
                if c.model_provider == model_provider
                and c.model_name == model_name
                and c.status == "active"
            ]
        if not matches:
            return None
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return max(matches, key=lambda c: c.published_at or epoch)

    def upsert(self, card: ModelCard) -> ModelCard:
        with self._lock:
            for index, existing in enumerate(self._cards):
                if (existing.model_provider, existing.model_name, existing.model_version) == (
                        card.model_provider, card.model_name, card.model_version):
                    updated = dataclasses.replace(card, id=existing.id)
                    self._cards[index] = updated
                    return updated
            self._cards.append(card)
            return card


DEFAULT_MODEL_CARDS = (
    {
        "model_provider": "openai",
        "model_name": "gpt-4o",
        "model_version": "2024-08-06",
        "description": "GPT-4o is OpenAI's multimodal model, capable of processing text and images.",
        "intended_use": "Enterprise compliance document generation, analysis, and risk assessment.",
        "limitations": (
            "May occasionally produce incorrect information. Should be reviewed by "
            "compliance professionals for critical use cases."
        ),
    },
    {
        "model_provider": "anthropic",
        "model_name": "claude-3-5-sonnet",
        "model_version": "20241022",
        "description": "Claude 3.5 Sonnet is Anthropic's balanced model with enhanced safety features.",
        "intended_use": (
            "Enterprise compliance analysis, document review, and policy generation "
            "with strong safety guarantees."
        ),
        "limitations": (
            "May decline to answer questions about harmful or regulated content. Best "
            "suited for professional and compliance use cases."
        ),
    },
)


def seed_default_model_cards(store) -> List[ModelCard]:
    """Upsert the default OpenAI and Anthropic model cards.

    Args:
        store: A model-card store exposing `upsert`

    Returns:
        The stored cards
    """
    now = datetime.now(timezone.utc)
    stored = []
    for data in DEFAULT_MODEL_CARDS:
        card = ModelCard(
            id=str(uuid.uuid4()),
            status="active",
            published_at=now,
            last_reviewed_at=now,
            **data,
        )
        stored.append(store.upsert(card))
    return stored
