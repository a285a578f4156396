"""
Shared fixtures for DispatchDesk tests.

InMemoryStore implements the same async CRUD surface as SupabaseService
so services can be exercised without a database.
"""

import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from dispatchdesk.config import Settings
from dispatchdesk.errors import Unauthenticated, UpstreamUnavailable
from dispatchdesk.models.dispatch import GeocodeResult
from dispatchdesk.models.job import ValidatedRequest

ORG_ID = "org-1"
USER_ID = "user-1"
TOKEN = "good-token"


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def _matches(row: Dict[str, Any], filters) -> bool:
    for column, op, value in filters:
        current = row.get(column)
        if op == "eq" and current != value:
            return False
        if op == "neq" and current == value:
            return False
        if op == "in" and current not in list(value):
            return False
        if op == "is_null" and current is not None:
            return False
        if op in ("gte", "lte"):
            if current is None:
                return False
            left, right = _comparable(current), _comparable(value)
            if op == "gte" and left < right:
                return False
            if op == "lte" and left > right:
                return False
    return True


class InMemoryStore:
    """Dict-of-tables fake of SupabaseService"""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.tokens: Dict[str, str] = {TOKEN: USER_ID}
        self.rpc_results: Dict[str, List[Dict[str, Any]]] = {}
        self.rpc_calls: List[tuple] = []
        self.fail_tables: set = set()
        self._next_id = 0

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def seed(self, table: str, *rows: Dict[str, Any]) -> None:
        self.rows(table).extend(copy.deepcopy(list(rows)))

    def _check(self, table: str) -> None:
        if table in self.fail_tables:
            raise UpstreamUnavailable("persistence", f"{table} unavailable")

    async def select(self, table, filters=(), *, order_by=None, desc=False, limit=None):
        self._check(table)
        rows = [copy.deepcopy(r) for r in self.rows(table) if _matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: _comparable(r.get(order_by)) or "", reverse=desc)
        return rows[:limit] if limit else rows

    async def insert(self, table, rows):
        self._check(table)
        rows = [rows] if isinstance(rows, dict) else list(rows)
        stored = []
        for row in rows:
            row = copy.deepcopy(row)
            if "id" not in row:
                self._next_id += 1
                row["id"] = f"{table}-{self._next_id}"
            self.rows(table).append(row)
            stored.append(copy.deepcopy(row))
        return stored

    async def update(self, table, changes, filters):
        self._check(table)
        changed = []
        for row in self.rows(table):
            if _matches(row, filters):
                row.update(copy.deepcopy(changes))
                changed.append(copy.deepcopy(row))
        return changed

    async def delete(self, table, filters):
        self._check(table)
        kept, deleted = [], []
        for row in self.rows(table):
            (deleted if _matches(row, filters) else kept).append(row)
        self.tables[table] = kept
        return deleted

    async def rpc(self, function, params):
        self.rpc_calls.append((function, params))
        return copy.deepcopy(self.rpc_results.get(function, []))

    async def get_user_id(self, access_token: str) -> str:
        if access_token not in self.tokens:
            raise Unauthenticated("Invalid or expired session")
        return self.tokens[access_token]


class StubGeocoder:
    """Geocoder returning a fixed result and counting calls"""

    def __init__(self, result: Optional[GeocodeResult] = None):
        self.result = result or GeocodeResult(
            success=True, lat=25.77, lng=-80.19, city="Miami", state="FL", provider="stub"
        )
        self.calls: List[str] = []

    async def geocode(self, address_text: str) -> GeocodeResult:
        self.calls.append(address_text)
        return self.result


class StubNotifier:
    """Notifier that records sends and can be told to fail"""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.sent: List[tuple] = []

    async def send(self, job, technician, record) -> bool:
        self.sent.append((job.id, technician["id"], record.channel.value))
        return self.deliver


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.seed("org_members", {"org_id": ORG_ID, "user_id": USER_ID, "role": "owner"})
    return s


@pytest.fixture
def settings() -> Settings:
    return Settings()


def make_request(**overrides) -> ValidatedRequest:
    data = {
        "title": "AC not cooling",
        "description": "Unit blowing warm air",
        "trade_needed": "HVAC",
        "address_text": "123 Main St, Miami, FL 33101",
        "urgency": "emergency",
        "budget_min": 500,
        "budget_max": 2000,
        "contact_name": "John Smith",
        "contact_phone": "555-123-4567",
        "contact_email": "john@example.com",
    }
    data.update(overrides)
    return ValidatedRequest.model_validate(data)


def technician_row(tech_id: str, **overrides) -> Dict[str, Any]:
    row = {
        "id": tech_id,
        "org_id": ORG_ID,
        "full_name": f"Tech {tech_id}",
        "email": f"{tech_id}@example.com",
        "trade_needed": "HVAC",
        "is_available": True,
        "signed_up": True,
        "unsubscribed_at": None,
        "lat": 25.78,
        "lng": -80.20,
        "rating": 4.0,
        "total_jobs": 4,
    }
    row.update(overrides)
    return row
