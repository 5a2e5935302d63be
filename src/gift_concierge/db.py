"""SQLite graph store for products, interest edges, recommendations and feedback events."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

import numpy as np

from gift_concierge.context import Product, StoredItem, StoredRecommendation
from gift_concierge.ports import InterestEdge, ProductHit
from gift_concierge.retrieval import similarity_to_unit, top_k_cosine


_POSITIVE_EVENTS = ("liked", "purchased")
_OUTCOME_PRIORITY = ("purchased", "liked", "dismissed")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_list(raw: Any) -> list[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(str(raw))
    except Exception:
        return []
    if not isinstance(parsed, list):
        return []
    return [str(value) for value in parsed if str(value).strip()]


class GiftGraphDB:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    price REAL NOT NULL,
                    vendor TEXT,
                    image_url TEXT,
                    url TEXT,
                    category TEXT,
                    embedding TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_products_price ON products(price);

                CREATE TABLE IF NOT EXISTS product_interests (
                    product_id TEXT NOT NULL,
                    interest TEXT NOT NULL,
                    relevance REAL NOT NULL,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (product_id, interest),
                    FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_product_interests_interest
                    ON product_interests(interest);

                CREATE TABLE IF NOT EXISTS recommendations (
                    recommendation_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    query_text TEXT NOT NULL,
                    recipient_name TEXT,
                    relationship_type TEXT,
                    occasion TEXT,
                    budget_min REAL,
                    budget_max REAL,
                    values_json TEXT,
                    interests_json TEXT,
                    item_count INTEGER NOT NULL,
                    trace_json TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_recommendations_user ON recommendations(user_id);

                CREATE TABLE IF NOT EXISTS recommendation_items (
                    recommendation_id TEXT NOT NULL,
                    product_id TEXT NOT NULL,
                    rank_position INTEGER NOT NULL,
                    confidence REAL NOT NULL,
                    price REAL,
                    vendor TEXT,
                    matched_interests_json TEXT,
                    PRIMARY KEY (recommendation_id, rank_position),
                    FOREIGN KEY (recommendation_id)
                        REFERENCES recommendations(recommendation_id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    subject_id TEXT NOT NULL,
                    object_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_subject ON events(subject_id);
                CREATE INDEX IF NOT EXISTS idx_events_object ON events(object_id, kind);
                """
            )

    # ------------------------------------------------------------------ catalog

    def upsert_products(self, items: Iterable[tuple[Product, Sequence[float]]]) -> None:
        timestamp = _utc_now()
        payload: list[tuple[Any, ...]] = []
        for product, embedding in items:
            payload.append(
                (
                    product.id,
                    product.title,
                    product.description,
                    float(product.price),
                    product.vendor,
                    product.image_url,
                    product.url,
                    product.category,
                    json.dumps([float(value) for value in embedding]) if embedding is not None else None,
                    timestamp,
                )
            )

        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO products (
                    id, title, description, price, vendor, image_url, url, category, embedding, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title,
                    description=excluded.description,
                    price=excluded.price,
                    vendor=excluded.vendor,
                    image_url=excluded.image_url,
                    url=excluded.url,
                    category=excluded.category,
                    embedding=excluded.embedding,
                    updated_at=excluded.updated_at
                """,
                payload,
            )

    def upsert_interest_edges(self, edges: Iterable[tuple[str, str, float]]) -> None:
        timestamp = _utc_now()
        payload = [
            (product_id, interest.strip().lower(), max(0.0, min(1.0, float(relevance))), timestamp)
            for product_id, interest, relevance in edges
            if interest.strip()
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO product_interests (product_id, interest, relevance, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(product_id, interest) DO UPDATE SET
                    relevance=excluded.relevance,
                    updated_at=excluded.updated_at
                """,
                payload,
            )

    @staticmethod
    def _row_to_product(row: sqlite3.Row) -> Product:
        return Product(
            id=str(row["id"]),
            title=str(row["title"]),
            description=str(row["description"] or ""),
            price=float(row["price"]),
            vendor=str(row["vendor"] or ""),
            image_url=row["image_url"] or None,
            url=row["url"] or None,
            category=row["category"] or None,
        )

    # ------------------------------------------------------------------ retrieval port

    def vector_query(
        self,
        embedding: Sequence[float],
        k: int,
        price_min: float,
        price_max: float,
    ) -> list[ProductHit]:
        if k <= 0 or price_min > price_max:
            return []

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.id, p.title, p.description, p.price, p.vendor, p.image_url, p.url, p.category,
                       p.embedding,
                       (SELECT COUNT(*) FROM events e
                         WHERE e.object_id = p.id AND e.kind IN ('liked', 'purchased')) AS social_proof
                FROM products p
                WHERE p.price >= ? AND p.price <= ? AND p.embedding IS NOT NULL
                """,
                (float(price_min), float(price_max)),
            ).fetchall()

        query = np.asarray(list(embedding), dtype=np.float32)
        kept: list[sqlite3.Row] = []
        vectors: list[list[float]] = []
        for row in rows:
            try:
                vector = json.loads(row["embedding"])
            except Exception:
                continue
            if not isinstance(vector, list) or len(vector) != query.shape[0]:
                continue
            kept.append(row)
            vectors.append(vector)
        if not kept:
            return []

        matrix = np.asarray(vectors, dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1).astype(np.float32)
        idx, scores = top_k_cosine(query, matrix, norms, k)
        unit_scores = similarity_to_unit(scores)

        return [
            ProductHit(
                product=self._row_to_product(kept[int(row_idx)]),
                vector_score=float(score),
                social_proof_count=int(kept[int(row_idx)]["social_proof"] or 0),
            )
            for row_idx, score in zip(idx, unit_scores)
        ]

    def traverse(
        self,
        product_ids: Sequence[str],
        interest_names: Sequence[str] | None,
    ) -> dict[str, list[InterestEdge]]:
        out: dict[str, list[InterestEdge]] = {str(pid): [] for pid in product_ids}
        if not out:
            return out
        if interest_names is not None:
            wanted = sorted({name.strip().lower() for name in interest_names if name and name.strip()})
            if not wanted:
                return out
        else:
            wanted = []

        id_sql = ", ".join(["?"] * len(out))
        params: list[Any] = list(out.keys())
        sql = f"""
            SELECT product_id, interest, relevance
            FROM product_interests
            WHERE product_id IN ({id_sql})
        """
        if wanted:
            sql += f" AND interest IN ({', '.join(['?'] * len(wanted))})"
            params.extend(wanted)
        sql += " ORDER BY product_id, interest"

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        for row in rows:
            out[str(row["product_id"])].append(
                InterestEdge(interest=str(row["interest"]), weight=float(row["relevance"]))
            )
        return out

    def upsert_edge_weight(
        self,
        product_id: str,
        interest: str,
        multiplier: float,
        clamp_min: float,
        clamp_max: float,
    ) -> bool:
        # Relative update in a single statement; concurrent feedback must not lose writes.
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE product_interests
                SET relevance = MIN(?, MAX(?, relevance * ?)),
                    success_count = success_count + CASE WHEN ? > 1.0 THEN 1 ELSE 0 END,
                    updated_at = ?
                WHERE product_id = ? AND interest = ?
                """,
                (
                    float(clamp_max),
                    float(clamp_min),
                    float(multiplier),
                    float(multiplier),
                    _utc_now(),
                    product_id,
                    interest.strip().lower(),
                ),
            )
        return cursor.rowcount > 0

    def record_event(
        self,
        kind: str,
        subject_id: str,
        object_id: str | None,
        timestamp: str | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO events (kind, subject_id, object_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (kind, subject_id, object_id, timestamp or _utc_now()),
            )

    # ------------------------------------------------------------------ recommendations

    def save_recommendation(
        self,
        stored: StoredRecommendation,
        *,
        recipient_name: str | None,
        relationship_type: str | None,
        occasion: str | None,
        budget_min: float | None,
        budget_max: float | None,
        values: Sequence[str],
        interests: Sequence[str],
        trace: dict[str, Any] | None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO recommendations (
                    recommendation_id, user_id, session_id, query_text, recipient_name, relationship_type,
                    occasion, budget_min, budget_max, values_json, interests_json, item_count, trace_json,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    stored.recommendation_id,
                    stored.user_id,
                    stored.session_id,
                    stored.query,
                    recipient_name,
                    relationship_type,
                    occasion,
                    budget_min,
                    budget_max,
                    json.dumps(list(values)),
                    json.dumps(list(interests)),
                    len(stored.items),
                    json.dumps(trace, default=str) if trace is not None else None,
                    stored.created_at or _utc_now(),
                ),
            )
            conn.executemany(
                """
                INSERT INTO recommendation_items (
                    recommendation_id, product_id, rank_position, confidence, price, vendor, matched_interests_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        stored.recommendation_id,
                        item.product_id,
                        item.rank,
                        item.confidence,
                        item.price,
                        item.vendor,
                        json.dumps(list(item.matched_interests)),
                    )
                    for item in stored.items
                ],
            )

    def get_recommendation(self, recommendation_id: str) -> StoredRecommendation | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT recommendation_id, user_id, session_id, query_text, created_at
                FROM recommendations
                WHERE recommendation_id = ?
                """,
                (recommendation_id,),
            ).fetchone()
            if not row:
                return None
            item_rows = conn.execute(
                """
                SELECT product_id, rank_position, confidence, price, vendor, matched_interests_json
                FROM recommendation_items
                WHERE recommendation_id = ?
                ORDER BY rank_position ASC
                """,
                (recommendation_id,),
            ).fetchall()

        return StoredRecommendation(
            recommendation_id=str(row["recommendation_id"]),
            user_id=str(row["user_id"]),
            session_id=str(row["session_id"]),
            query=str(row["query_text"]),
            created_at=str(row["created_at"]),
            items=tuple(
                StoredItem(
                    product_id=str(item["product_id"]),
                    rank=int(item["rank_position"]),
                    confidence=float(item["confidence"]),
                    price=float(item["price"] or 0.0),
                    vendor=str(item["vendor"] or ""),
                    matched_interests=tuple(_json_list(item["matched_interests_json"])),
                )
                for item in item_rows
            ),
        )

    def get_trace(self, recommendation_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT trace_json FROM recommendations WHERE recommendation_id = ?",
                (recommendation_id,),
            ).fetchone()
        if not row or not row["trace_json"]:
            return None
        try:
            parsed = json.loads(row["trace_json"])
        except Exception:
            return None
        return parsed if isinstance(parsed, dict) else None

    # ------------------------------------------------------------------ memory reads

    def past_conversations(self, user_id: str, *, limit: int = 10) -> list[dict[str, Any]]:
        safe_limit = max(1, min(int(limit), 50))
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT recommendation_id, session_id, query_text, recipient_name, occasion,
                       item_count, created_at
                FROM recommendations
                WHERE user_id = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (user_id, safe_limit),
            ).fetchall()

            out: list[dict[str, Any]] = []
            for row in rows:
                kinds = {
                    str(event["kind"])
                    for event in conn.execute(
                        "SELECT DISTINCT kind FROM events WHERE subject_id = ?",
                        (row["recommendation_id"],),
                    ).fetchall()
                }
                outcome = next((kind for kind in _OUTCOME_PRIORITY if kind in kinds), None)
                out.append(
                    {
                        "recommendation_id": str(row["recommendation_id"]),
                        "session_id": str(row["session_id"]),
                        "timestamp": str(row["created_at"]),
                        "query": str(row["query_text"]),
                        "recipient_name": row["recipient_name"],
                        "occasion": row["occasion"],
                        "recommendations_given": int(row["item_count"]),
                        "outcome_known": outcome is not None,
                        "outcome": outcome,
                    }
                )
        return out

    def past_recipients(self, user_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT recommendation_id,
                       COALESCE(NULLIF(trim(lower(relationship_type)), ''), 'unknown') AS relationship_type,
                       recipient_name,
                       interests_json
                FROM recommendations
                WHERE user_id = ?
                ORDER BY created_at ASC
                """,
                (user_id,),
            ).fetchall()

            grouped: dict[str, dict[str, Any]] = {}
            for row in rows:
                name = str(row["recipient_name"] or "").strip() or None
                key = f"{row['relationship_type']}:{(name or '').lower()}"
                entry = grouped.setdefault(
                    key,
                    {
                        "recipient_id": key,
                        "relationship_type": str(row["relationship_type"]),
                        "name": name,
                        "gifts_given_count": 0,
                        "successful_gifts": [],
                        "known_interests": [],
                    },
                )
                entry["gifts_given_count"] += 1
                for interest in _json_list(row["interests_json"]):
                    if interest not in entry["known_interests"]:
                        entry["known_interests"].append(interest)
                for event in conn.execute(
                    f"""
                    SELECT DISTINCT object_id FROM events
                    WHERE subject_id = ? AND kind IN ({', '.join(['?'] * len(_POSITIVE_EVENTS))})
                    """,
                    (row["recommendation_id"], *_POSITIVE_EVENTS),
                ).fetchall():
                    product_id = str(event["object_id"])
                    if product_id not in entry["successful_gifts"]:
                        entry["successful_gifts"].append(product_id)
        return list(grouped.values())

    def user_preferences(self, user_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            budget_row = conn.execute(
                """
                SELECT COUNT(*) AS n, AVG(budget_min) AS avg_min, AVG(budget_max) AS avg_max
                FROM recommendations
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
            if not budget_row or int(budget_row["n"] or 0) == 0:
                return None

            vendor_rows = conn.execute(
                """
                SELECT p.vendor AS vendor, COUNT(*) AS score
                FROM events e
                JOIN recommendations r ON r.recommendation_id = e.subject_id
                JOIN products p ON p.id = e.object_id
                WHERE r.user_id = ?
                  AND e.kind IN ('liked', 'purchased')
                  AND p.vendor IS NOT NULL
                  AND trim(p.vendor) != ''
                GROUP BY p.vendor
                ORDER BY score DESC, p.vendor ASC
                LIMIT 5
                """,
                (user_id,),
            ).fetchall()

            avoided_rows = conn.execute(
                """
                SELECT p.category AS category, COUNT(*) AS score
                FROM events e
                JOIN recommendations r ON r.recommendation_id = e.subject_id
                JOIN products p ON p.id = e.object_id
                WHERE r.user_id = ?
                  AND e.kind = 'dismissed'
                  AND p.category IS NOT NULL
                  AND trim(p.category) != ''
                GROUP BY p.category
                HAVING COUNT(*) >= 2
                ORDER BY score DESC, p.category ASC
                """,
                (user_id,),
            ).fetchall()

            value_rows = conn.execute(
                "SELECT values_json FROM recommendations WHERE user_id = ?",
                (user_id,),
            ).fetchall()

        values: list[str] = []
        for row in value_rows:
            for value in _json_list(row["values_json"]):
                if value not in values:
                    values.append(value)

        typical_budget = None
        if budget_row["avg_max"] is not None:
            typical_budget = {
                "min": float(budget_row["avg_min"] or 0.0),
                "max": float(budget_row["avg_max"]),
            }

        return {
            "typical_budget": typical_budget,
            "preferred_vendors": [str(row["vendor"]) for row in vendor_rows],
            "avoided_categories": [str(row["category"]) for row in avoided_rows],
            "value_alignment": values,
        }

    def stats(self) -> dict[str, Any]:
        with self._connect() as conn:
            counts = conn.execute(
                """
                SELECT
                  (SELECT COUNT(*) FROM products) AS product_count,
                  (SELECT COUNT(*) FROM product_interests) AS edge_count,
                  (SELECT COUNT(*) FROM recommendations) AS recommendation_count,
                  (SELECT COUNT(*) FROM events) AS event_count
                """
            ).fetchone()
        return (
            dict(counts)
            if counts
            else {
                "product_count": 0,
                "edge_count": 0,
                "recommendation_count": 0,
                "event_count": 0,
            }
        )

    # ------------------------------------------------------------------ inspection
    # Read-only lookups for tests and operator tooling; the pipeline does not call them.

    def get_product(self, product_id: str) -> Product | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, title, description, price, vendor, image_url, url, category
                FROM products
                WHERE id = ?
                """,
                (product_id,),
            ).fetchone()
        return self._row_to_product(row) if row else None

    def edge_weight(self, product_id: str, interest: str) -> float | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT relevance FROM product_interests WHERE product_id = ? AND interest = ?",
                (product_id, interest.strip().lower()),
            ).fetchone()
        return float(row["relevance"]) if row else None

    def list_events(self, subject_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT kind, subject_id, object_id, created_at
                FROM events
                WHERE subject_id = ?
                ORDER BY id ASC
                """,
                (subject_id,),
            ).fetchall()
        return [dict(row) for row in rows]
