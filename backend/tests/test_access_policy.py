import pytest

from app.core.enums import Department, DenyReason, Operation, Role
from app.models.file import File
from app.models.folder import Folder
from app.services.access_policy import AccessPolicy, Actor

policy = AccessPolicy()

OWNER_ID = 1


def make_folder(**overrides):
    fields = dict(
        id=10,
        name="Ops",
        department="IT",
        is_public=False,
        created_by=OWNER_ID,
        allowed_departments=[],
        allowed_users=[],
        denied_users=[],
    )
    fields.update(overrides)
    return Folder(**fields)


def make_file(shared_with=None):
    return File(id=100, folder_id=10, name="plan.pdf", shared_with=shared_with or [])


def employee(user_id, department="IT"):
    return Actor(id=user_id, role=Role.EMPLOYEE, department=Department(department))


ALL_OPERATIONS = list(Operation)


# ---------- deny overrides everything ----------

@pytest.mark.parametrize("folder_kwargs", [
    {"is_public": True},
    {"department": "IT"},
    {"allowed_departments": ["IT"]},
    {"allowed_users": [7]},
])
def test_denied_user_cannot_view_regardless_of_positive_grants(folder_kwargs):
    folder = make_folder(denied_users=[7], **folder_kwargs)
    file = make_file([{"user_id": 7, "access_type": "edit"}])

    assert policy.decide(employee(7), folder, Operation.VIEW) == \
        policy.decide(employee(7), folder, Operation.VIEW, file=file)
    decision = policy.decide(employee(7), folder, Operation.VIEW, file=file)
    assert not decision
    assert decision.reason == DenyReason.EXPLICITLY_DENIED


def test_denied_user_denied_for_every_operation():
    folder = make_folder(is_public=True, denied_users=[7])
    manager = Actor(id=7, role=Role.MANAGER, department=Department.IT)
    for operation in ALL_OPERATIONS:
        decision = policy.decide(manager, folder, operation, target_user_id=99)
        assert decision.reason == DenyReason.EXPLICITLY_DENIED


def test_deny_wins_when_user_is_in_both_lists():
    folder = make_folder(department="Finance", allowed_users=[7], denied_users=[7])
    assert not policy.decide(employee(7), folder, Operation.VIEW)


# ---------- admin ----------

@pytest.mark.parametrize("operation", ALL_OPERATIONS)
def test_admin_is_allowed_everything(operation):
    admin = Actor(id=50, role=Role.ADMIN, department=None)
    folder = make_folder(department="Finance")
    decision = policy.decide(admin, folder, operation, target_user_id=2)
    assert decision
    assert decision.basis == "admin"


# ---------- public folders ----------

@pytest.mark.parametrize("department", [d.value for d in Department])
@pytest.mark.parametrize("role", [Role.EMPLOYEE, Role.MANAGER])
def test_public_folder_is_visible_to_everyone_not_denied(department, role):
    folder = make_folder(department="Finance", is_public=True)
    actor = Actor(id=3, role=role, department=Department(department))
    assert policy.decide(actor, folder, Operation.VIEW)


def test_public_folder_visible_to_user_without_department():
    folder = make_folder(is_public=True)
    assert policy.decide(Actor(id=3, role=Role.EMPLOYEE), folder, Operation.VIEW)


# ---------- ownership ----------

def test_owner_can_manage_and_delete_after_removal_from_allow_lists():
    folder = make_folder(department="Finance", allowed_departments=[], allowed_users=[])
    owner = employee(OWNER_ID, "HR & Admin")
    assert policy.decide(owner, folder, Operation.MANAGE).basis == "owner"
    assert policy.decide(owner, folder, Operation.DELETE).basis == "owner"


def test_owner_on_deny_list_is_denied():
    folder = make_folder(allowed_users=[OWNER_ID], denied_users=[OWNER_ID])
    owner = employee(OWNER_ID)
    for operation in (Operation.MANAGE, Operation.DELETE, Operation.VIEW):
        assert policy.decide(owner, folder, operation).reason == DenyReason.EXPLICITLY_DENIED


# ---------- view / upload eligibility ----------

def test_department_scenario_deny_beats_department_match():
    folder = make_folder(department="IT", allowed_departments=["IT"], denied_users=[7])
    assert not policy.decide(employee(7, "IT"), folder, Operation.VIEW)
    assert policy.decide(employee(9, "IT"), folder, Operation.VIEW)


def test_allowed_department_and_allowed_user_are_eligible():
    folder = make_folder(department="Finance", allowed_departments=["IT"], allowed_users=[12])
    assert policy.decide(employee(3, "IT"), folder, Operation.VIEW)
    assert policy.decide(employee(12, "Technical"), folder, Operation.UPLOAD)
    decision = policy.decide(employee(4, "Supply Chain"), folder, Operation.VIEW)
    assert decision.reason == DenyReason.NO_MATCHING_RULE


def test_share_grant_opens_view_but_not_upload():
    folder = make_folder(department="Finance")
    file = make_file([{"user_id": 2, "access_type": "view"}])
    sharee = employee(2, "IT")

    view = policy.decide(sharee, folder, Operation.VIEW, file=file)
    assert view
    assert view.basis == "share"
    assert not policy.decide(sharee, folder, Operation.UPLOAD)
    assert not policy.decide(sharee, folder, Operation.VIEW)


def test_department_share_grant_matches_actor_department():
    folder = make_folder(department="Finance")
    file = make_file([{"department": "Technical", "access_type": "download"}])
    assert policy.decide(employee(5, "Technical"), folder, Operation.VIEW, file=file)
    assert not policy.decide(employee(6, "IT"), folder, Operation.VIEW, file=file)


def test_upload_against_a_file_is_not_allowed():
    folder = make_folder(department="IT")
    decision = policy.decide(employee(3, "IT"), folder, Operation.UPLOAD, file=make_file())
    assert decision.reason == DenyReason.NO_MATCHING_RULE


def test_folder_gated_policy_ignores_share_grants():
    gated = AccessPolicy(share_grants_bypass_folder=False)
    folder = make_folder(department="Finance")
    file = make_file([{"user_id": 2, "access_type": "edit"}])
    assert not gated.decide(employee(2), folder, Operation.VIEW, file=file)


# ---------- manage / delete / block ----------

def test_department_manager_can_manage_own_department_only():
    folder = make_folder(department="IT")
    it_manager = Actor(id=20, role=Role.MANAGER, department=Department.IT)
    hr_manager = Actor(id=21, role=Role.MANAGER, department=Department.HR_ADMIN)

    assert policy.decide(it_manager, folder, Operation.DELETE).basis == "department-manager"
    assert policy.decide(hr_manager, folder, Operation.MANAGE).reason == DenyReason.INSUFFICIENT_PRIVILEGE


def test_eligible_employee_cannot_manage():
    folder = make_folder(department="IT", is_public=True)
    decision = policy.decide(employee(3, "IT"), folder, Operation.MANAGE)
    assert decision.reason == DenyReason.INSUFFICIENT_PRIVILEGE


def test_block_requires_manage_and_non_owner_target():
    folder = make_folder(department="IT")
    it_manager = Actor(id=20, role=Role.MANAGER, department=Department.IT)

    assert policy.decide(it_manager, folder, Operation.BLOCK, target_user_id=3)
    owner_target = policy.decide(it_manager, folder, Operation.BLOCK, target_user_id=OWNER_ID)
    assert owner_target.reason == DenyReason.TARGET_IS_OWNER
    assert policy.decide(employee(OWNER_ID), folder, Operation.BLOCK, target_user_id=3).basis == "owner"
    assert not policy.decide(employee(3), folder, Operation.BLOCK, target_user_id=4)


# ---------- malformed input ----------

def test_unknown_operation_is_a_programming_error():
    with pytest.raises(ValueError):
        policy.decide(employee(3), make_folder(), "archive")


def test_block_without_target_is_a_programming_error():
    with pytest.raises(ValueError):
        policy.decide(employee(3), make_folder(), Operation.BLOCK)


def test_actor_role_must_be_a_role():
    with pytest.raises(TypeError):
        policy.decide(Actor(id=3, role="admin"), make_folder(), Operation.VIEW)


def test_download_allowed_by_any_matching_grant():
    file = make_file([
        {"department": "HR & Admin", "access_type": "view"},
        {"user_id": 2, "access_type": "download"},
    ])
    assert len(policy.find_share_grants(employee(2, "HR & Admin"), file)) == 2
    assert policy.share_allows_download(employee(2, "HR & Admin"), file)
    assert not policy.share_allows_download(employee(3, "HR & Admin"), file)
    assert not policy.share_allows_download(employee(4, "IT"), file)
