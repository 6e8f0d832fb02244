"""Tests for the Tasks router."""
import pytest
from sqlalchemy import select

from models import ActivityLog, BoardColumn, Notification, NotificationType, Task, TaskAssignment
from tests.conftest import add_tasks, first_group, get_auth_headers, grant_board, make_board


async def _status_column(db_session, board):
    return (await db_session.execute(
        select(BoardColumn.id).where(BoardColumn.board_id == board.id)
    )).scalar_one()


async def _create(client, headers, group_id, name, **extra):
    resp = await client.post("/api/v1/tasks", json={"group_id": group_id, "name": name, **extra}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ============================================================
# CREATE / REORDER / MOVE
# ============================================================

@pytest.mark.asyncio
async def test_sequential_creates_get_dense_positions(client, db_session, workspace, board, employee):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    created = [await _create(client, headers, group.id, name) for name in ("A", "B", "C")]
    assert [t["position"] for t in created] == [0, 1, 2]


@pytest.mark.asyncio
async def test_create_with_field_values(client, db_session, workspace, board, employee):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    status_id = await _status_column(db_session, board)

    task = await _create(client, headers, group.id, "Valued", field_values={status_id: "2"})
    detail = (await client.get(f"/api/v1/tasks/{task['id']}", headers=headers)).json()
    assert detail["field_values"] == {status_id: "2"}


@pytest.mark.asyncio
async def test_create_with_foreign_column_is_404(client, db_session, workspace, board, owner, employee):
    other = await make_board(db_session, workspace, owner, name="Other")
    foreign_column = await _status_column(db_session, other)
    group = await first_group(db_session, board)

    resp = await client.post("/api/v1/tasks", json={
        "group_id": group.id, "name": "Bad", "field_values": {foreign_column: "x"},
    }, headers=get_auth_headers(employee))
    assert resp.status_code == 404
    assert (await db_session.execute(select(Task).where(Task.group_id == group.id))).all() == []


@pytest.mark.asyncio
async def test_reorder_tasks_scenario(client, db_session, workspace, board, employee, recorder):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    a, b, c = [await _create(client, headers, group.id, name) for name in ("A", "B", "C")]

    resp = await client.post("/api/v1/tasks/reorder", json={"group_id": group.id, "task_ids": [c["id"], a["id"], b["id"]]},
                             headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"group_id": group.id, "task_ids": [c["id"], a["id"], b["id"]]}

    detail = (await client.get(f"/api/v1/boards/{board.id}", headers=headers)).json()
    tasks = detail["groups"][0]["tasks"]
    assert [(t["name"], t["position"]) for t in tasks] == [("C", 0), ("A", 1), ("B", 2)]
    assert recorder.actions[-1] == "task.reordered"


@pytest.mark.asyncio
async def test_reorder_with_stranger_id_is_422(client, db_session, workspace, board, employee):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    a = await _create(client, headers, group.id, "A")

    resp = await client.post("/api/v1/tasks/reorder", json={"group_id": group.id, "task_ids": [a["id"], "ghost"]},
                             headers=headers)
    assert resp.status_code == 422
    assert resp.json()["unexpected"] == ["ghost"]


@pytest.mark.asyncio
async def test_move_task_to_another_group_appends(client, db_session, workspace, board, employee, recorder):
    headers = get_auth_headers(employee)
    source = await first_group(db_session, board)
    destination = (await client.post("/api/v1/groups", json={"board_id": board.id, "name": "Done"},
                                      headers=headers)).json()
    mover = await _create(client, headers, source.id, "Mover")
    for name in ("X", "Y"):
        await _create(client, headers, destination["id"], name)

    resp = await client.patch(f"/api/v1/tasks/{mover['id']}", json={"group_id": destination["id"]}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["group_id"] == destination["id"]
    assert resp.json()["position"] == 2
    assert "task.moved" in recorder.actions

    log = (await db_session.execute(
        select(ActivityLog).where(ActivityLog.task_id == mover["id"], ActivityLog.action == "moved")
    )).scalar_one()
    assert log.details["from_group_id"] == source.id


@pytest.mark.asyncio
async def test_move_requires_edit_on_destination(client, db_session, workspace, board, owner, customer):
    """Customer can edit the public source board but only read the destination"""
    public = await make_board(db_session, workspace, owner, is_public=True, name="Public")
    public_group = await first_group(db_session, public)
    private_group = await first_group(db_session, board)
    await grant_board(db_session, board, customer, can_edit=False)
    (task,) = await add_tasks(db_session, public_group, owner, ["Escape"])

    resp = await client.patch(f"/api/v1/tasks/{task.id}", json={"group_id": private_group.id},
                              headers=get_auth_headers(customer))
    assert resp.status_code == 403
    group_id = (await db_session.execute(select(Task.group_id).where(Task.id == task.id))).scalar_one()
    assert group_id == public_group.id


@pytest.mark.asyncio
async def test_move_to_missing_group_is_404(client, db_session, workspace, board, employee, owner):
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Lost"])
    resp = await client.patch(f"/api/v1/tasks/{task.id}", json={"group_id": "nowhere"},
                              headers=get_auth_headers(employee))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_rename_and_soft_delete_task(client, db_session, workspace, board, employee, owner):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Old"])

    resp = await client.patch(f"/api/v1/tasks/{task.id}", json={"name": "New"}, headers=headers)
    assert resp.json()["name"] == "New"

    assert (await client.delete(f"/api/v1/tasks/{task.id}", headers=headers)).status_code == 200
    assert (await client.get(f"/api/v1/tasks/{task.id}", headers=headers)).status_code == 404

    replacement = await _create(client, headers, group.id, "After delete")
    assert replacement["position"] == 1


# ============================================================
# FIELD VALUES / ASSIGNMENTS / COMMENTS
# ============================================================

@pytest.mark.asyncio
async def test_set_field_value_upserts(client, db_session, workspace, board, employee, owner):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Fielded"])
    status_id = await _status_column(db_session, board)
    url = f"/api/v1/tasks/{task.id}/field/{status_id}"

    assert (await client.patch(url, json={"value": "1"}, headers=headers)).json()["value"] == "1"
    assert (await client.patch(url, json={"value": "3"}, headers=headers)).json()["value"] == "3"

    detail = (await client.get(f"/api/v1/tasks/{task.id}", headers=headers)).json()
    assert detail["field_values"] == {status_id: "3"}
    assert [a["action"] for a in detail["activity"]] == ["field_updated", "field_updated"]


@pytest.mark.asyncio
async def test_assign_notifies_and_rejects_duplicates(client, db_session, workspace, board, employee, owner):
    headers = get_auth_headers(owner)
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Assign me"])
    url = f"/api/v1/tasks/{task.id}/assign"

    assert (await client.post(url, json={"user_id": employee.id}, headers=headers)).status_code == 201
    assert (await client.post(url, json={"user_id": employee.id}, headers=headers)).status_code == 409

    notes = (await db_session.execute(
        select(Notification).where(Notification.user_id == employee.id)
    )).scalars().all()
    assert [n.notification_type for n in notes] == [NotificationType.TASK_ASSIGNED]

    detail = (await client.get(f"/api/v1/tasks/{task.id}", headers=headers)).json()
    assert [a["id"] for a in detail["assignees"]] == [employee.id]

    assert (await client.delete(f"{url}/{employee.id}", headers=headers)).status_code == 200
    assert (await client.delete(f"{url}/{employee.id}", headers=headers)).status_code == 404
    assert (await db_session.execute(select(TaskAssignment))).all() == []


@pytest.mark.asyncio
async def test_read_only_customer_can_comment_but_not_edit(client, db_session, workspace, board, customer, owner, employee):
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Discuss"])
    await grant_board(db_session, board, customer, can_edit=False)
    db_session.add(TaskAssignment(task_id=task.id, user_id=employee.id))
    await db_session.commit()
    headers = get_auth_headers(customer)

    resp = await client.post(f"/api/v1/tasks/{task.id}/comments", json={"content": "Looks good"}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["user"]["id"] == customer.id

    assert (await client.patch(f"/api/v1/tasks/{task.id}", json={"name": "x"}, headers=headers)).status_code == 403

    notes = (await db_session.execute(
        select(Notification).where(Notification.user_id == employee.id)
    )).scalars().all()
    assert [n.notification_type for n in notes] == [NotificationType.TASK_COMMENT]


@pytest.mark.asyncio
async def test_only_author_deletes_comment(client, db_session, workspace, board, owner, employee):
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Thread"])
    comment = (await client.post(f"/api/v1/tasks/{task.id}/comments", json={"content": "mine"},
                                 headers=get_auth_headers(employee))).json()
    url = f"/api/v1/tasks/{task.id}/comments/{comment['id']}"

    assert (await client.delete(url, headers=get_auth_headers(owner))).status_code == 403
    assert (await client.delete(url, headers=get_auth_headers(employee))).status_code == 200
    assert (await client.delete(url, headers=get_auth_headers(employee))).status_code == 404


# ============================================================
# SUB-TASKS
# ============================================================

@pytest.mark.asyncio
async def test_subtask_lifecycle(client, db_session, workspace, board, employee, owner):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    (task,) = await add_tasks(db_session, group, owner, ["Parent"])
    base = f"/api/v1/tasks/{task.id}/subtasks"

    first = (await client.post(base, json={"name": "First"}, headers=headers)).json()
    second = (await client.post(base, json={"name": "Second"}, headers=headers)).json()
    assert (first["position"], second["position"]) == (0, 1)

    resp = await client.post(f"{base}/reorder", json={"subtask_ids": [second["id"], first["id"]]}, headers=headers)
    assert resp.status_code == 200

    resp = await client.patch(f"{base}/{first['id']}", json={"is_completed": True}, headers=headers)
    assert resp.json()["is_completed"] is True
    assert resp.json()["position"] == 1

    assert (await client.delete(f"{base}/{second['id']}", headers=headers)).status_code == 200

    detail = (await client.get(f"/api/v1/tasks/{task.id}", headers=headers)).json()
    assert [(s["name"], s["is_completed"]) for s in detail["sub_tasks"]] == [("First", True)]


@pytest.mark.asyncio
async def test_subtask_under_wrong_task_is_404(client, db_session, workspace, board, employee, owner):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    one, two = await add_tasks(db_session, group, owner, ["One", "Two"])
    sub = (await client.post(f"/api/v1/tasks/{one.id}/subtasks", json={"name": "Sub"}, headers=headers)).json()

    resp = await client.patch(f"/api/v1/tasks/{two.id}/subtasks/{sub['id']}", json={"name": "x"}, headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_concurrent_task_creates_stay_unique(client, db_session, workspace, board, employee):
    import asyncio
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)

    responses = await asyncio.gather(*(
        client.post("/api/v1/tasks", json={"group_id": group.id, "name": f"T{i}"}, headers=headers)
        for i in range(6)
    ))
    assert all(r.status_code == 201 for r in responses)
    positions = (await db_session.execute(
        select(Task.position).where(Task.group_id == group.id)
    )).scalars().all()
    assert sorted(positions) == list(range(6))


@pytest.mark.asyncio
async def test_reorder_bodies_name_their_id_lists(client, db_session, workspace, board, employee):
    headers = get_auth_headers(employee)
    group = await first_group(db_session, board)
    a = await _create(client, headers, group.id, "A")

    resp = await client.post("/api/v1/tasks/reorder", json={"group_id": group.id, "ids": [a["id"]]}, headers=headers)
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"
    assert resp.json()["detail"][0]["loc"] == ["body", "task_ids"]

    resp = await client.post("/api/v1/groups/reorder", json={"board_id": board.id, "group_ids": [group.id]},
                             headers=headers)
    assert resp.json() == {"board_id": board.id, "group_ids": [group.id]}
