"""In-memory directory used for development and tests."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from feedback_app.models.enums import EmploymentStatus

from .client import ConnectionStatus, DirectoryClient
from .records import FetchedRecord, parse_records

DEFAULT_EMPLOYEES: tuple[dict[str, Any], ...] = (
    {
        "employee_id": "CM12345",
        "email": "john.doe@clubmed.com",
        "first_name": "John",
        "last_name": "Doe",
        "display_name": "John Doe",
        "department": "IT",
        "village_id": "vlg-001",
        "role": "USER",
        "status": "active",
        "start_date": "2023-01-15",
    },
    {
        "employee_id": "CM67890",
        "email": "jane.smith@clubmed.com",
        "first_name": "Jane",
        "last_name": "Smith",
        "display_name": "Jane Smith",
        "department": "Product",
        "village_id": "vlg-002",
        "role": "PM",
        "status": "active",
        "start_date": "2022-05-01",
    },
    {
        "employee_id": "CM11111",
        "email": "bob.transfer@clubmed.com",
        "first_name": "Bob",
        "last_name": "Transfer",
        "display_name": "Bob Transfer",
        "department": "Operations",
        "village_id": "vlg-003",
        "previous_village_id": "vlg-001",
        "role": "USER",
        "status": "active",
        "start_date": "2021-03-10",
        "transfer_date": "2024-01-01",
    },
    {
        "employee_id": "CM22222",
        "email": "alice.departed@clubmed.com",
        "first_name": "Alice",
        "last_name": "Departed",
        "display_name": "Alice Departed",
        "department": "HR",
        "village_id": "vlg-001",
        "role": "USER",
        "status": "departed",
        "start_date": "2020-06-01",
        "end_date": "2024-02-28",
    },
)

DEFAULT_UPDATED_IDS: tuple[str, ...] = ("CM11111",)


class MockDirectoryClient(DirectoryClient):
    """
    Serve a fixed set of employee payloads.

    ``updated`` lists the payloads returned by ``fetch_since`` regardless of the
    timestamp; by default it is the transfer fixture.
    """

    def __init__(
        self,
        employees: Iterable[Mapping[str, Any]] | None = None,
        *,
        updated: Iterable[Mapping[str, Any]] | None = None,
    ) -> None:
        self.employees: list[dict[str, Any]] = [
            dict(item) for item in (DEFAULT_EMPLOYEES if employees is None else employees)
        ]
        if updated is None:
            updated = [item for item in self.employees if item.get("employee_id") in DEFAULT_UPDATED_IDS]
        self.updated: list[dict[str, Any]] = [dict(item) for item in updated]
        self.calls: list[tuple[str, Any]] = []

    def fetch_all(self, status: EmploymentStatus | None = None) -> list[FetchedRecord]:
        self.calls.append(("fetch_all", status))
        payloads: Sequence[Mapping[str, Any]] = self.employees
        if status is not None:
            wanted = EmploymentStatus(status).value
            payloads = [item for item in payloads if item.get("status") == wanted]
        return parse_records(payloads)

    def fetch_since(self, since: datetime) -> list[FetchedRecord]:
        self.calls.append(("fetch_since", since))
        return parse_records(self.updated)

    def fetch_one(self, employee_id: str) -> FetchedRecord | None:
        self.calls.append(("fetch_one", employee_id))
        for item in self.employees:
            if item.get("employee_id") == employee_id:
                return parse_records([item])[0]
        return None

    def test_connection(self) -> ConnectionStatus:
        self.calls.append(("test_connection", None))
        return ConnectionStatus(ok=True)
