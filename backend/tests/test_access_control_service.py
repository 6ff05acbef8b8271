import pytest
from sqlalchemy.exc import OperationalError

from app.core.enums import ActivityAction, DenyReason
from app.core.exceptions import ConflictError, LedgerWriteFailure, NotFoundError, ValidationError
from app.models.activity_log import ActivityLogEntry
from app.services.access_control_service import access_control_service
from app.services.access_service import access_service
from app.services.activity_ledger import activity_ledger
from app.services.folder_service import folder_service
from app.services.resource_store import resource_store


@pytest.fixture
def owner(make_user):
    return make_user(role="manager", department="IT")


@pytest.fixture
def folder(db, owner):
    return folder_service.create_folder(db, owner, "Ops Runbooks", "Runbooks", "IT")


def _entries(db, action):
    return db.query(ActivityLogEntry).filter(ActivityLogEntry.action == action.value).all()


def _ledger_offline(session, entry):
    raise RuntimeError("ledger offline")


def test_grant_department_gives_view_and_is_logged(db, owner, folder, make_user):
    analyst = make_user(department="Finance")
    assert not access_service.can_view(db, analyst, folder.id)

    decision = access_control_service.grant_access(db, owner, folder.id, departments=["Finance"])

    assert decision
    assert access_service.can_view(db, analyst, folder.id)
    [entry] = _entries(db, ActivityAction.ACCESS_GRANTED)
    assert entry.user_id == owner.id
    assert entry.folder_name == "Ops Runbooks"
    assert entry.details == {"target_type": "department", "target": "Finance", "mode": "grant"}


def test_grant_rolled_back_when_ledger_write_fails(db, owner, folder, session_factory, monkeypatch):
    before = (list(folder.allowed_departments), list(folder.allowed_users), folder.version)
    monkeypatch.setattr(activity_ledger, "_write", _ledger_offline)

    with pytest.raises(LedgerWriteFailure):
        access_control_service.grant_access(db, owner, folder.id, departments=["Finance"])

    fresh = session_factory()
    try:
        reloaded = resource_store.get_folder(fresh, folder.id)
        assert (reloaded.allowed_departments, reloaded.allowed_users, reloaded.version) == before
        assert "Finance" not in reloaded.allowed_departments
        assert not _entries(fresh, ActivityAction.ACCESS_GRANTED)
    finally:
        fresh.close()


def test_non_manager_grant_is_denied_without_change(db, folder, make_user):
    colleague = make_user(department="IT")
    decision = access_control_service.grant_access(db, colleague, folder.id, departments=["Finance"])

    assert not decision
    assert decision.reason == DenyReason.INSUFFICIENT_PRIVILEGE
    assert "Finance" not in resource_store.get_folder(db, folder.id).allowed_departments
    assert not _entries(db, ActivityAction.ACCESS_GRANTED)


def test_grant_unknown_department_is_rejected(db, owner, folder):
    with pytest.raises(ValidationError):
        access_control_service.grant_access(db, owner, folder.id, departments=["Marketing"])


def test_grant_unknown_user_is_not_found(db, owner, folder):
    with pytest.raises(NotFoundError):
        access_control_service.grant_access(db, owner, folder.id, user_ids=[9999])


def test_grant_with_stale_version_conflicts(db, owner, folder):
    stale = folder.version
    access_control_service.grant_access(db, owner, folder.id, departments=["Finance"])

    with pytest.raises(ConflictError):
        access_control_service.grant_access(
            db, owner, folder.id, departments=["Technical"], expected_version=stale)
    assert "Technical" not in resource_store.get_folder(db, folder.id).allowed_departments


def test_concurrent_mutation_from_another_session_conflicts(owner, folder, session_factory):
    first, second = session_factory(), session_factory()
    try:
        # Both sessions read the same snapshot
        resource_store.get_folder(first, folder.id)
        resource_store.get_folder(second, folder.id)

        access_control_service.grant_access(second, owner, folder.id, departments=["Finance"])
        with pytest.raises(ConflictError):
            access_control_service.grant_access(first, owner, folder.id, departments=["Technical"])
    finally:
        first.close()
        second.close()


def test_revoke_department_keeps_file_share_grants(db, owner, folder, make_user, tmp_path):
    analyst = make_user(department="Finance")
    access_control_service.grant_access(db, owner, folder.id, departments=["Finance"])
    file = resource_store.add_file(db, folder, owner, "budget.xlsx", 10, str(tmp_path / "b.xlsx"))
    access_control_service.share_file(db, owner, file.id, user_id=analyst.id, access_type="view")

    access_control_service.revoke_access(db, owner, folder.id, departments=["Finance"])

    assert not access_service.can_view(db, analyst, folder.id)
    assert access_service.can_view(db, analyst, folder.id, file.id)
    assert resource_store.get_file(db, file.id).shared_with[0]["user_id"] == analyst.id
    [revoked] = _entries(db, ActivityAction.ACCESS_REVOKED)
    assert revoked.details["mode"] == "revoke"


def test_block_moves_user_from_allow_to_deny(db, owner, folder, make_user):
    contractor = make_user(department="Technical")
    access_control_service.grant_access(db, owner, folder.id, user_ids=[contractor.id])
    assert access_service.can_view(db, contractor, folder.id)

    decision = access_control_service.block_user(db, owner, folder.id, contractor.id, reason="left project")

    assert decision
    reloaded = resource_store.get_folder(db, folder.id)
    assert contractor.id in reloaded.denied_users
    assert contractor.id not in reloaded.allowed_users
    assert not access_service.can_view(db, contractor, folder.id)
    [entry] = _entries(db, ActivityAction.ACCESS_REVOKED)
    assert entry.target_user_id == contractor.id
    assert entry.details == {
        "target_type": "user", "target": str(contractor.id), "mode": "block", "reason": "left project"}


def test_blocked_department_member_loses_department_access(db, owner, folder, make_user):
    it_user = make_user(department="IT")
    assert access_service.can_view(db, it_user, folder.id)
    access_control_service.block_user(db, owner, folder.id, it_user.id)
    assert not access_service.can_view(db, it_user, folder.id)


def test_owner_cannot_be_blocked_even_by_admin(db, owner, folder, make_user):
    admin = make_user(role="admin", department=None)
    with pytest.raises(ValidationError):
        access_control_service.block_user(db, admin, folder.id, owner.id)

    manager = make_user(role="manager", department="IT")
    decision = access_control_service.block_user(db, manager, folder.id, owner.id)
    assert decision.reason == DenyReason.TARGET_IS_OWNER


def test_admin_cannot_be_blocked(db, owner, folder, make_user):
    admin = make_user(role="admin", department="IT")
    with pytest.raises(ValidationError):
        access_control_service.block_user(db, owner, folder.id, admin.id)


def test_blocked_user_cannot_be_granted_until_unblocked(db, owner, folder, make_user):
    user = make_user(department="HR & Admin")
    access_control_service.block_user(db, owner, folder.id, user.id)

    with pytest.raises(ValidationError):
        access_control_service.grant_access(db, owner, folder.id, user_ids=[user.id])

    access_control_service.unblock_user(db, owner, folder.id, user.id)
    access_control_service.grant_access(db, owner, folder.id, user_ids=[user.id])
    assert access_service.can_view(db, user, folder.id)
    unblock = [e for e in _entries(db, ActivityAction.ACCESS_GRANTED) if e.details["mode"] == "unblock"]
    assert len(unblock) == 1


def test_unblock_of_user_not_blocked_is_not_found(db, owner, folder, make_user):
    user = make_user()
    with pytest.raises(NotFoundError):
        access_control_service.unblock_user(db, owner, folder.id, user.id)


def test_share_private_finance_file_with_user(db, make_user, tmp_path):
    finance_head = make_user(role="manager", department="Finance")
    reader = make_user(department="IT")
    folder = folder_service.create_folder(db, finance_head, "Payroll", "", "Finance")
    file = resource_store.add_file(db, folder, finance_head, "salaries.xlsx", 42, str(tmp_path / "s.xlsx"))

    access_control_service.share_file(db, finance_head, file.id, user_id=reader.id, access_type="view")

    assert access_service.can_view(db, reader, folder.id, file.id)
    assert not access_service.can_upload(db, reader, folder.id)
    [entry] = _entries(db, ActivityAction.SHARE)
    assert entry.file_name == "salaries.xlsx"
    assert entry.details == {"target_type": "user", "target": str(reader.id), "access_type": "view"}


def test_resharing_updates_access_type_in_place(db, owner, folder, make_user, tmp_path):
    user = make_user(department="Finance")
    file = resource_store.add_file(db, folder, owner, "a.txt", 1, str(tmp_path / "a.txt"))
    access_control_service.share_file(db, owner, file.id, user_id=user.id, access_type="view")
    access_control_service.share_file(db, owner, file.id, user_id=user.id, access_type="edit")

    grants = resource_store.get_file(db, file.id).shared_with
    assert len(grants) == 1
    assert grants[0]["access_type"] == "edit"


def test_share_requires_exactly_one_target(db, owner, folder, tmp_path):
    file = resource_store.add_file(db, folder, owner, "a.txt", 1, str(tmp_path / "a.txt"))
    with pytest.raises(ValidationError):
        access_control_service.share_file(db, owner, file.id)
    with pytest.raises(ValidationError):
        access_control_service.share_file(db, owner, file.id, user_id=owner.id, department="IT")
    with pytest.raises(ValidationError):
        access_control_service.share_file(db, owner, file.id, department="IT", access_type="own")


def test_unshare_removes_grant_and_logs(db, owner, folder, tmp_path):
    file = resource_store.add_file(db, folder, owner, "a.txt", 1, str(tmp_path / "a.txt"))
    access_control_service.share_file(db, owner, file.id, department="Technical")
    access_control_service.unshare_file(db, owner, file.id, department="Technical")

    assert resource_store.get_file(db, file.id).shared_with == []
    [entry] = _entries(db, ActivityAction.ACCESS_REVOKED)
    assert entry.details["mode"] == "unshare"
    with pytest.raises(NotFoundError):
        access_control_service.unshare_file(db, owner, file.id, department="Technical")


def test_share_rolled_back_when_ledger_write_fails(db, owner, folder, make_user, tmp_path, monkeypatch):
    user = make_user(department="Finance")
    file = resource_store.add_file(db, folder, owner, "a.txt", 1, str(tmp_path / "a.txt"))
    monkeypatch.setattr(activity_ledger, "_write", _ledger_offline)

    with pytest.raises(LedgerWriteFailure):
        access_control_service.share_file(db, owner, file.id, user_id=user.id)

    assert resource_store.get_file(db, file.id).shared_with == []


# ---------- folder metadata ----------

def test_update_folder_publish_and_departments_are_audited(db, owner, folder, make_user):
    outsider = make_user(department="Supply Chain")
    assert not access_service.can_view(db, outsider, folder.id)

    decision = access_control_service.update_folder(
        db, owner, folder.id, is_public=True, allowed_departments=["IT", "Finance"])

    assert decision
    reloaded = resource_store.get_folder(db, folder.id)
    assert reloaded.is_public
    assert reloaded.allowed_departments == ["IT", "Finance"]
    assert access_service.can_view(db, outsider, folder.id)
    details = [e.details for e in _entries(db, ActivityAction.ACCESS_GRANTED)]
    assert {"target_type": "public", "target": "everyone", "mode": "publish"} in details
    assert {"target_type": "department", "target": "Finance", "mode": "grant"} in details

    access_control_service.update_folder(db, owner, folder.id, is_public=False, allowed_departments=["IT"])
    revoked = [e.details["mode"] for e in _entries(db, ActivityAction.ACCESS_REVOKED)]
    assert sorted(revoked) == ["revoke", "unpublish"]
    assert not access_service.can_view(db, outsider, folder.id)


def test_rename_keeps_earlier_entry_snapshots(db, owner, folder):
    access_control_service.grant_access(db, owner, folder.id, departments=["Finance"])

    access_control_service.update_folder(db, owner, folder.id, name="Ops Handbook", description="Updated")

    reloaded = resource_store.get_folder(db, folder.id)
    assert (reloaded.name, reloaded.description) == ("Ops Handbook", "Updated")
    [entry] = _entries(db, ActivityAction.ACCESS_GRANTED)
    assert entry.folder_name == "Ops Runbooks"


def test_update_folder_validation(db, owner, folder, make_user):
    with pytest.raises(ValidationError):
        access_control_service.update_folder(db, owner, folder.id, name="x" * 101)
    with pytest.raises(ValidationError):
        access_control_service.update_folder(db, owner, folder.id, description="d" * 501)
    with pytest.raises(ValidationError):
        access_control_service.update_folder(db, owner, folder.id, allowed_departments=["Legal"])

    folder_service.create_folder(db, owner, "Taken", "", "IT")
    with pytest.raises(ConflictError):
        access_control_service.update_folder(db, owner, folder.id, name="Taken")

    colleague = make_user(department="IT")
    decision = access_control_service.update_folder(db, colleague, folder.id, is_public=True)
    assert decision.reason == DenyReason.INSUFFICIENT_PRIVILEGE
    assert not resource_store.get_folder(db, folder.id).is_public


def test_concurrent_folder_edits_conflict(owner, folder, session_factory):
    first, second = session_factory(), session_factory()
    try:
        resource_store.get_folder(first, folder.id)
        resource_store.get_folder(second, folder.id)

        access_control_service.update_folder(second, owner, folder.id, name="Ops Renamed")
        with pytest.raises(ConflictError):
            access_control_service.update_folder(first, owner, folder.id, is_public=True)

        reloaded = resource_store.get_folder(first, folder.id)
        assert reloaded.name == "Ops Renamed"
        assert not reloaded.is_public
    finally:
        first.close()
        second.close()


def test_update_folder_with_stale_expected_version(db, owner, folder):
    stale = folder.version
    access_control_service.update_folder(db, owner, folder.id, description="v2")
    with pytest.raises(ConflictError):
        access_control_service.update_folder(db, owner, folder.id, description="v3", expected_version=stale)
    assert resource_store.get_folder(db, folder.id).description == "v2"


def test_failed_commit_leaves_session_clean(db, owner, folder, monkeypatch):
    def commit_fails(session):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(resource_store, "commit", commit_fails)
    with pytest.raises(RuntimeError):
        access_control_service.grant_access(db, owner, folder.id, departments=["Finance"])
    monkeypatch.undo()

    assert not db.dirty
    assert "Finance" not in resource_store.get_folder(db, folder.id).allowed_departments
    assert not _entries(db, ActivityAction.ACCESS_GRANTED)


# ---------- fail closed ----------

def test_checks_fail_closed_when_database_errors(db, owner, folder, monkeypatch):
    def unreachable(*args, **kwargs):
        raise OperationalError("SELECT folders", {}, Exception("database is locked"))

    assert access_service.can_view(db, owner, folder.id)
    monkeypatch.setattr(resource_store, "get_folder", unreachable)

    assert access_service.can_view(db, owner, folder.id) is False
    assert access_service.can_manage(db, owner, folder.id) is False
    assert access_service.can_delete(db, owner, folder.id) is False


def test_can_block_refuses_owner_target(db, owner, folder, make_user):
    manager = make_user(role="manager", department="IT")
    member = make_user(department="IT")
    assert access_service.can_block(db, manager, folder.id, member.id)
    assert not access_service.can_block(db, manager, folder.id, owner.id)
    assert not access_service.can_block(db, member, folder.id, owner.id)
