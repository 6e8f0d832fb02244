"""Tests for the hierarchical access resolver."""
import pytest

from access import (
    AccessFacts, AccessResolver, Permission, SqlMembershipStore, Target, WorkspaceFacts, decide,
)
from errors import Forbidden, NotFound
from models import MemberRole, WorkspaceMember, SubTask
from tests.conftest import add_tasks, first_group, grant_board


class FakeStore:
    """In-memory membership store keyed by (actor, target id)"""

    def __init__(self, facts=None, workspace_facts=None):
        self.facts = facts or {}
        self.workspace_facts = workspace_facts or {}
        self.lock_requests = []

    async def load_facts(self, actor_id, target, lock=False):
        self.lock_requests.append(lock)
        return self.facts.get((actor_id, target.id))

    async def load_workspace_facts(self, actor_id, workspace_id):
        return self.workspace_facts.get((actor_id, workspace_id))


def _facts(role, is_public=False, member=None):
    return AccessFacts(
        board_id="b1", workspace_id="w1", is_public=is_public, workspace_role=role,
        has_board_member=member is not None, board_member_can_edit=bool(member),
    )


# ============================================================
# PURE DECISION RULES
# ============================================================

@pytest.mark.parametrize("role", [MemberRole.OWNER_ADMIN, MemberRole.EMPLOYEE])
@pytest.mark.parametrize("is_public", [True, False])
@pytest.mark.parametrize("member", [None, False, True])
def test_staff_roles_always_edit(role, is_public, member):
    assert decide(_facts(role, is_public, member)) is Permission.EDIT


def test_no_workspace_membership_is_denied():
    assert decide(_facts(None, is_public=True, member=True)) is Permission.DENIED


def test_customer_private_board_without_membership_is_denied():
    assert decide(_facts(MemberRole.CUSTOMER)) is Permission.DENIED


def test_customer_board_member_permissions():
    assert decide(_facts(MemberRole.CUSTOMER, member=False)) is Permission.READ_ONLY
    assert decide(_facts(MemberRole.CUSTOMER, member=True)) is Permission.EDIT


def test_customer_public_board_defaults_to_edit():
    assert decide(_facts(MemberRole.CUSTOMER, is_public=True)) is Permission.EDIT
    assert decide(_facts(MemberRole.CUSTOMER, is_public=True, member=False)) is Permission.EDIT


def test_public_board_read_only_policy_upgraded_by_member_grant():
    facts = _facts(MemberRole.CUSTOMER, is_public=True)
    assert decide(facts, Permission.READ_ONLY) is Permission.READ_ONLY

    with_grant = _facts(MemberRole.CUSTOMER, is_public=True, member=True)
    assert decide(with_grant, Permission.READ_ONLY) is Permission.EDIT


def test_permission_ranking():
    assert Permission.EDIT.satisfies(Permission.READ_ONLY)
    assert Permission.READ_ONLY.satisfies(Permission.READ_ONLY)
    assert not Permission.READ_ONLY.satisfies(Permission.EDIT)
    assert not Permission.DENIED.satisfies(Permission.READ_ONLY)


# ============================================================
# RESOLVER OVER A FAKE STORE
# ============================================================

@pytest.mark.asyncio
async def test_resolve_missing_target_is_not_found():
    resolver = AccessResolver(FakeStore())
    with pytest.raises(NotFound) as exc:
        await resolver.resolve("u1", Target.task("t-missing"))
    assert exc.value.entity == "task"


@pytest.mark.asyncio
async def test_require_masks_missing_target_when_asked():
    resolver = AccessResolver(FakeStore())
    with pytest.raises(Forbidden):
        await resolver.require("u1", Target.board("nope"), Permission.READ_ONLY, mask_missing=True)


@pytest.mark.asyncio
async def test_require_edit_locks_membership_and_read_does_not():
    store = FakeStore({("u1", "g1"): _facts(MemberRole.EMPLOYEE)})
    resolver = AccessResolver(store)

    await resolver.require("u1", Target.group("g1"), Permission.READ_ONLY)
    decision = await resolver.require("u1", Target.group("g1"), Permission.EDIT)

    assert store.lock_requests == [False, True]
    assert decision.board_id == "b1"
    assert decision.can_edit


@pytest.mark.asyncio
async def test_require_edit_rejects_read_only_customer():
    store = FakeStore({("c1", "t1"): _facts(MemberRole.CUSTOMER, member=False)})
    resolver = AccessResolver(store)

    decision = await resolver.require("c1", Target.task("t1"), Permission.READ_ONLY)
    assert decision.permission is Permission.READ_ONLY

    with pytest.raises(Forbidden) as exc:
        await resolver.require("c1", Target.task("t1"), Permission.EDIT)
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_resolver_uses_injected_public_policy():
    store = FakeStore({("c1", "b1"): _facts(MemberRole.CUSTOMER, is_public=True)})
    resolver = AccessResolver(store, public_permission=Permission.READ_ONLY)
    decision = await resolver.resolve("c1", Target.board("b1"))
    assert decision.permission is Permission.READ_ONLY


@pytest.mark.asyncio
async def test_workspace_decisions():
    store = FakeStore(workspace_facts={
        ("admin", "w1"): WorkspaceFacts("w1", MemberRole.OWNER_ADMIN),
        ("cust", "w1"): WorkspaceFacts("w1", MemberRole.CUSTOMER),
        ("nobody", "w1"): WorkspaceFacts("w1", None),
    })
    resolver = AccessResolver(store)

    assert (await resolver.resolve_workspace("admin", "w1")).permission is Permission.EDIT
    assert (await resolver.resolve_workspace("cust", "w1")).permission is Permission.READ_ONLY
    assert (await resolver.resolve_workspace("nobody", "w1")).permission is Permission.DENIED
    with pytest.raises(Forbidden):
        await resolver.require_workspace("cust", "w1", Permission.EDIT)
    with pytest.raises(NotFound):
        await resolver.resolve_workspace("admin", "w-missing")


# ============================================================
# RESOLVER OVER THE DATABASE
# ============================================================

@pytest.mark.asyncio
async def test_chain_resolution_for_every_target_kind(db_session, workspace, board, employee, owner):
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Inspect roof"])
    subtask = SubTask(task_id=task.id, name="Call roofer", position=0)
    db_session.add(subtask)
    await db_session.commit()

    resolver = AccessResolver.for_session(db_session)
    from sqlalchemy import select
    from models import BoardColumn
    column_id = (await db_session.execute(
        select(BoardColumn.id).where(BoardColumn.board_id == board.id)
    )).scalar_one()

    for target in (
        Target.board(board.id), Target.group(group.id), Target.column(column_id),
        Target.task(task.id), Target.subtask(subtask.id),
    ):
        decision = await resolver.resolve(employee.id, target)
        assert decision.board_id == board.id
        assert decision.workspace_id == workspace.id
        assert decision.permission is Permission.EDIT


@pytest.mark.asyncio
async def test_customer_scenario_read_only_then_edit(db_session, workspace, board, customer):
    """Board member without canEdit reads; flipping canEdit grants edit"""
    resolver = AccessResolver.for_session(db_session)
    assert (await resolver.resolve(customer.id, Target.board(board.id))).permission is Permission.DENIED

    member = await grant_board(db_session, board, customer, can_edit=False)
    assert (await resolver.resolve(customer.id, Target.board(board.id))).permission is Permission.READ_ONLY

    member.can_edit = True
    await db_session.commit()
    assert (await resolver.resolve(customer.id, Target.board(board.id))).permission is Permission.EDIT


@pytest.mark.asyncio
async def test_customer_gets_edit_on_public_board(db_session, workspace, public_board, customer):
    resolver = AccessResolver.for_session(db_session)
    decision = await resolver.resolve(customer.id, Target.board(public_board.id))
    assert decision.permission is Permission.EDIT


@pytest.mark.asyncio
async def test_outsider_is_denied_even_on_public_board(db_session, workspace, public_board, outsider):
    resolver = AccessResolver.for_session(db_session)
    decision = await resolver.resolve(outsider.id, Target.board(public_board.id))
    assert decision.permission is Permission.DENIED


@pytest.mark.asyncio
async def test_deactivated_membership_is_denied(db_session, workspace, board, employee):
    from sqlalchemy import update
    await db_session.execute(
        update(WorkspaceMember)
        .where(WorkspaceMember.user_id == employee.id)
        .values(is_active=False)
    )
    await db_session.commit()

    resolver = AccessResolver.for_session(db_session)
    decision = await resolver.resolve(employee.id, Target.board(board.id))
    assert decision.permission is Permission.DENIED


@pytest.mark.asyncio
async def test_soft_deleted_chain_is_not_found(db_session, workspace, board, owner, employee):
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Paint fence"])
    resolver = AccessResolver.for_session(db_session)

    group.is_active = False
    await db_session.commit()
    with pytest.raises(NotFound):
        await resolver.resolve(employee.id, Target.task(task.id))
    with pytest.raises(NotFound):
        await resolver.resolve(employee.id, Target.group(group.id))

    group.is_active = True
    board.is_active = False
    await db_session.commit()
    with pytest.raises(NotFound):
        await resolver.resolve(employee.id, Target.task(task.id))


@pytest.mark.asyncio
async def test_store_locks_membership_row_without_error_on_sqlite(db_session, workspace, board, employee):
    facts = await SqlMembershipStore(db_session).load_facts(employee.id, Target.board(board.id), lock=True)
    assert facts.workspace_role == MemberRole.EMPLOYEE
