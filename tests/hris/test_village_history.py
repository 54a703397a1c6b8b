from __future__ import annotations

from datetime import date

import pytest

from feedback_app.hris.errors import VillageHistoryError
from feedback_app.hris.village_history import VillageHistory
from feedback_app.models import VillageAssignment, db


@pytest.fixture
def member(user_factory, village_factory):
    village_factory("vlg-001", "vlg-002", "vlg-003")
    return user_factory(employee_id="CM1")


def test_open_then_transfer_closes_previous_entry(member):
    history = VillageHistory.for_user(member)
    history.open("vlg-001", date(2023, 1, 1))
    history.transfer("vlg-002", date(2024, 1, 1))
    db.session.commit()

    assert history.as_list() == [
        {"village_id": "vlg-001", "from": "2023-01-01", "to": "2024-01-01"},
        {"village_id": "vlg-002", "from": "2024-01-01", "to": None},
    ]
    assert history.current_village_id == "vlg-002"
    open_rows = VillageAssignment.query.filter_by(user_id=member.id, assigned_to=None).all()
    assert [row.village_id for row in open_rows] == ["vlg-002"]


def test_transfer_to_current_village_is_noop(member):
    history = VillageHistory.for_user(member)
    history.open("vlg-001", date(2023, 1, 1))
    assert history.transfer("vlg-001", date(2024, 1, 1)) is None
    assert len(history.entries) == 1


def test_second_open_entry_is_rejected(member):
    history = VillageHistory.for_user(member)
    history.open("vlg-001", date(2023, 1, 1))
    with pytest.raises(VillageHistoryError):
        history.open("vlg-002", date(2023, 6, 1))


def test_close_never_ends_before_start(member):
    history = VillageHistory.for_user(member)
    history.open("vlg-001", date(2024, 5, 1))
    closed = history.close(date(2024, 1, 1))
    assert closed.assigned_to == date(2024, 5, 1)
    assert history.open_entry is None


def test_backdated_transfer_starts_where_previous_entry_ended(member):
    history = VillageHistory.for_user(member)
    history.open("vlg-001", date(2024, 5, 1))
    entry = history.transfer("vlg-002", date(2024, 1, 1))
    assert entry.assigned_from == date(2024, 5, 1)


def test_history_without_entries_transfers_by_opening(member):
    history = VillageHistory.for_user(member)
    entry = history.transfer("vlg-003", date(2024, 2, 1))
    assert entry.assigned_from == date(2024, 2, 1)
    assert history.current_village_id == "vlg-003"


def test_corrupt_history_is_refused():
    entries = [
        VillageAssignment(user_id="usr_x", village_id="vlg-001", assigned_from=date(2023, 1, 1)),
        VillageAssignment(user_id="usr_x", village_id="vlg-002", assigned_from=date(2023, 2, 1)),
    ]
    with pytest.raises(VillageHistoryError):
        VillageHistory("usr_x", entries)
