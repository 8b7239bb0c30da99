"""User profile lookup for delivery audience rules."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, time
from typing import Any

from courier.audience.types import AudienceRule, UserProfile
from courier.infrastructure.config import PREVIEW_LIMIT
from courier.infrastructure.database import contains_pattern


def build_audience_filter(rule: AudienceRule) -> tuple[str, list[Any]]:
    """Translate ``rule`` into a WHERE clause over ``user_profiles``."""
    clauses: list[str] = []
    values: list[Any] = []

    if rule.user_type != "all":
        clauses.append("user_type = ?")
        values.append(rule.user_type)
    if rule.marketing_opt_in != "all":
        clauses.append("marketing_opt_in = ?")
        values.append(1 if rule.marketing_opt_in == "yes" else 0)
    if rule.has_communicated != "all":
        negate = "" if rule.has_communicated == "yes" else "NOT "
        clauses.append(f"id {negate}IN (SELECT user_id FROM demo_requests WHERE user_id IS NOT NULL)")
    if rule.interest_tags:
        placeholders = ", ".join("?" for _ in rule.interest_tags)
        clauses.append(
            f"EXISTS (SELECT 1 FROM json_each(user_profiles.interest_tags) WHERE json_each.value IN ({placeholders}))"
        )
        values.extend(rule.interest_tags)
    if rule.country:
        clauses.append("country LIKE ? ESCAPE '\\'")
        values.append(contains_pattern(rule.country))
    if rule.city:
        clauses.append("city LIKE ? ESCAPE '\\'")
        values.append(contains_pattern(rule.city))
    if rule.registered_from:
        clauses.append("created_at >= ?")
        values.append(datetime.combine(rule.registered_from, time.min).isoformat())
    if rule.registered_to:
        clauses.append("created_at <= ?")
        values.append(datetime.combine(rule.registered_to, time.max).isoformat())
    if rule.last_login_start:
        clauses.append("last_login_at >= ?")
        values.append(datetime.combine(rule.last_login_start, time.min).isoformat())
    if rule.last_login_end:
        clauses.append("last_login_at <= ?")
        values.append(datetime.combine(rule.last_login_end, time.max).isoformat())

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, values


class AudienceRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def create_user(self, user: UserProfile) -> None:
        self._db.execute(
            """INSERT INTO user_profiles
               (id, name, email, user_type, country, city, company_name, interest_tags, marketing_opt_in, last_login_at, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                user.id, user.name, user.email, user.user_type, user.country, user.city, user.company_name,
                json.dumps(user.interest_tags), int(user.marketing_opt_in),
                user.last_login_at.isoformat() if user.last_login_at else None,
                user.created_at.isoformat(),
            ),
        )
        self._db.commit()

    def record_demo_request(self, id: str, user_id: str | None, created_at: datetime) -> None:
        self._db.execute(
            "INSERT INTO demo_requests (id, user_id, created_at) VALUES (?, ?, ?)",
            (id, user_id, created_at.isoformat()),
        )
        self._db.commit()

    def find(self, rule: AudienceRule, limit: int | None = None) -> list[UserProfile]:
        where, values = build_audience_filter(rule)
        sql = f"SELECT * FROM user_profiles {where} ORDER BY created_at"
        if limit is not None:
            sql += " LIMIT ?"
            values.append(limit)
        rows = self._db.execute(sql, values).fetchall()
        return [self._row_to_user(row) for row in rows]

    def count(self, rule: AudienceRule) -> int:
        where, values = build_audience_filter(rule)
        row = self._db.execute(f"SELECT COUNT(*) FROM user_profiles {where}", values).fetchone()
        return int(row[0])

    def preview(self, rule: AudienceRule) -> list[UserProfile]:
        return self.find(rule, limit=PREVIEW_LIMIT)

    def unique_interest_tags(self) -> list[str]:
        rows = self._db.execute(
            "SELECT DISTINCT json_each.value FROM user_profiles, json_each(user_profiles.interest_tags)"
        ).fetchall()
        return sorted(row[0] for row in rows if isinstance(row[0], str))

    def _row_to_user(self, row: sqlite3.Row) -> UserProfile:
        data = dict(row)
        data["interest_tags"] = json.loads(data["interest_tags"] or "[]")
        data["marketing_opt_in"] = bool(data["marketing_opt_in"])
        return UserProfile.model_validate(data)
