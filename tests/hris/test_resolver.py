from __future__ import annotations

import pytest
from sqlalchemy import select

from feedback_app.hris.errors import (
    ConflictAlreadyResolved,
    ConflictNotFound,
    InvalidResolution,
    StaleConflictError,
)
from feedback_app.hris.resolver import ConflictResolver, MergeDirective
from feedback_app.hris.village_history import VillageHistory
from feedback_app.models import AuditLog, HRISConflict, User, db
from feedback_app.models.hris.schema import ConflictKind, ConflictStatus, ResolutionChoice, SyncMode


@pytest.fixture
def resolver():
    return ConflictResolver()


@pytest.fixture
def duplicate_email_conflict(village_factory, user_factory, orchestrator_factory, make_employee):
    """A pending duplicate_email conflict against an identity without an employee id."""
    village_factory("vlg-001")
    user = user_factory(email="anna.one@clubmed.com", department="Front Desk")
    employees = [make_employee("CM1", "anna.one@clubmed.com", village_id="vlg-001", department="Spa")]
    orchestrator_factory(employees)[0].run_sync(SyncMode.FULL)
    conflict = db.session.execute(select(HRISConflict)).scalar_one()
    assert conflict.kind == ConflictKind.DUPLICATE_EMAIL
    return conflict, user


@pytest.fixture
def email_change_conflict(user_factory, orchestrator_factory, make_employee):
    """A pending email_change conflict whose new address belongs to someone else."""
    user = user_factory(employee_id="CM1", email="anna.old@clubmed.com")
    holder = user_factory(email="anna.new@clubmed.com")
    orchestrator_factory([make_employee("CM1", "anna.new@clubmed.com")])[0].run_sync(SyncMode.FULL)
    conflict = db.session.execute(select(HRISConflict)).scalar_one()
    assert conflict.kind == ConflictKind.EMAIL_CHANGE
    return conflict, user, holder


def test_keep_system_only_closes_the_conflict(resolver, duplicate_email_conflict, admin_user):
    conflict, user = duplicate_email_conflict
    version = user.version_id

    resolved = resolver.apply_resolution(conflict.id, "keep_system", actor_id=admin_user.id, notes="Different people")

    assert resolved.status == ConflictStatus.RESOLVED
    assert resolved.resolution == ResolutionChoice.KEEP_SYSTEM
    assert resolved.resolved_automatically is False
    assert resolved.resolved_by_user_id == admin_user.id
    assert resolved.resolution_notes == "Different people"
    assert resolved.resolved_at is not None
    user = db.session.get(User, user.id)
    assert user.version_id == version
    assert user.employee_id is None
    audit = db.session.execute(select(AuditLog).where(AuditLog.action == "hris.conflict_resolved")).scalar_one()
    assert audit.actor_user_id == admin_user.id
    assert audit.details["resolution"] == "keep_system"


def test_use_hris_links_and_overwrites_identity(resolver, duplicate_email_conflict, admin_user):
    conflict, user = duplicate_email_conflict

    resolver.apply_resolution(conflict.id, ResolutionChoice.USE_HRIS, actor_id=admin_user.id)

    user = db.session.get(User, user.id)
    assert user.employee_id == "CM1"
    assert user.department == "Spa"
    assert user.current_village_id == "vlg-001"
    assert [entry["village_id"] for entry in VillageHistory.for_user(user).as_list()] == ["vlg-001"]


def test_merge_applies_only_selected_fields(resolver, duplicate_email_conflict, admin_user):
    conflict, user = duplicate_email_conflict

    resolver.apply_resolution(
        conflict.id,
        "merge",
        actor_id=admin_user.id,
        merge={"department": "hris", "email": "system", "village": "system"},
    )

    user = db.session.get(User, user.id)
    assert user.department == "Spa"
    assert user.employee_id is None
    assert user.current_village_id is None
    conflict = db.session.get(HRISConflict, conflict.id)
    assert conflict.resolution == ResolutionChoice.MERGE
    audit = db.session.execute(select(AuditLog).where(AuditLog.action == "hris.conflict_resolved")).scalar_one()
    assert audit.details["merge"] == {"department": "hris", "email": "system", "village": "system"}


@pytest.mark.parametrize(
    "merge",
    [None, {}, {"salary": "hris"}, {"department": "both"}],
)
def test_merge_rejects_bad_directives(resolver, duplicate_email_conflict, admin_user, merge):
    conflict, _ = duplicate_email_conflict

    with pytest.raises(InvalidResolution):
        resolver.apply_resolution(conflict.id, "merge", actor_id=admin_user.id, merge=merge)

    assert db.session.get(HRISConflict, conflict.id).status == ConflictStatus.PENDING


def test_merge_directive_lists_directory_fields():
    directive = MergeDirective.coerce({"email": "HRIS", "role": " system "})
    assert directive.hris_fields() == ("email",)
    assert directive.to_dict() == {"email": "hris", "role": "system"}


def test_create_new_refuses_to_duplicate_an_email(resolver, duplicate_email_conflict, admin_user):
    conflict, _ = duplicate_email_conflict

    with pytest.raises(InvalidResolution, match="already belongs"):
        resolver.apply_resolution(conflict.id, "create_new", actor_id=admin_user.id)

    assert db.session.get(HRISConflict, conflict.id).status == ConflictStatus.PENDING
    assert User.find_by_employee_id("CM1") is None


def test_create_new_keeps_candidate_untouched(resolver, duplicate_email_conflict, admin_user):
    conflict, user = duplicate_email_conflict
    user.email = "anna.frontdesk@clubmed.com"
    db.session.commit()

    resolver.apply_resolution(conflict.id, "create_new", actor_id=admin_user.id)

    created = User.find_by_employee_id("CM1")
    assert created.id != user.id
    assert created.email == "anna.one@clubmed.com"
    assert created.current_village_id == "vlg-001"
    assert db.session.get(User, user.id).department == "Front Desk"
    assert db.session.execute(
        select(AuditLog).where(AuditLog.action == "hris.user_created", AuditLog.resource_id == created.id)
    ).scalar_one().details["conflict_id"] == conflict.id


def test_choice_must_be_allowed_for_kind(resolver, email_change_conflict, admin_user):
    conflict, _, _ = email_change_conflict

    with pytest.raises(InvalidResolution, match="not allowed"):
        resolver.apply_resolution(conflict.id, "create_new", actor_id=admin_user.id)
    with pytest.raises(InvalidResolution, match="Unknown resolution"):
        resolver.apply_resolution(conflict.id, "delete_everything", actor_id=admin_user.id)


def test_use_hris_cannot_steal_an_email(resolver, email_change_conflict, admin_user):
    conflict, user, holder = email_change_conflict

    with pytest.raises(InvalidResolution, match=holder.id):
        resolver.apply_resolution(conflict.id, "use_hris", actor_id=admin_user.id)

    assert db.session.get(User, user.id).email == "anna.old@clubmed.com"
    assert db.session.get(HRISConflict, conflict.id).status == ConflictStatus.PENDING


def test_resolution_is_not_reapplied(resolver, email_change_conflict, admin_user):
    conflict, user, _ = email_change_conflict
    resolver.apply_resolution(conflict.id, "keep_system", actor_id=admin_user.id)
    version = db.session.get(User, user.id).version_id

    with pytest.raises(ConflictAlreadyResolved):
        resolver.apply_resolution(conflict.id, "merge", actor_id=admin_user.id, merge={"email": "hris"})

    assert db.session.get(User, user.id).version_id == version
    assert db.session.get(HRISConflict, conflict.id).resolution == ResolutionChoice.KEEP_SYSTEM


def test_unknown_conflict(resolver, admin_user):
    with pytest.raises(ConflictNotFound):
        resolver.apply_resolution(999, "keep_system", actor_id=admin_user.id)


def test_identity_changed_since_detection_is_stale(resolver, duplicate_email_conflict, admin_user):
    conflict, user = duplicate_email_conflict
    user.department = "Kids Club"
    db.session.commit()

    with pytest.raises(StaleConflictError) as excinfo:
        resolver.apply_resolution(conflict.id, "use_hris", actor_id=admin_user.id)
    assert excinfo.value.expected_version == conflict.identity_version
    assert excinfo.value.actual_version == db.session.get(User, user.id).version_id

    resolver.apply_resolution(conflict.id, "use_hris", actor_id=admin_user.id, force=True)
    assert db.session.get(User, user.id).department == "Spa"


def test_stale_check_does_not_apply_to_keep_system(resolver, duplicate_email_conflict, admin_user):
    conflict, user = duplicate_email_conflict
    user.department = "Kids Club"
    db.session.commit()

    resolver.apply_resolution(conflict.id, "keep_system", actor_id=admin_user.id)

    assert db.session.get(HRISConflict, conflict.id).status == ConflictStatus.RESOLVED
