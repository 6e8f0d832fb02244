# tests/conftest.py - Shared test fixtures
import os
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("PUBLIC_BOARD_ACCESS", "edit")

from models import (
    Base, User, MemberRole, Workspace, WorkspaceMember, Board, BoardMember,
    BoardColumn, Group, Task, FieldType,
)
from auth import AuthService
from database import get_db_session
from events import EventEmitter, get_event_emitter
from main import app


class RecordingSink:
    """Captures emitted events in memory"""

    def __init__(self):
        self.events = []

    async def __call__(self, bind, event):
        self.events.append(event)

    @property
    def actions(self):
        return [e.action for e in self.events]


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def recorder():
    return RecordingSink()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, recorder):
    """HTTP test client with overridden DB dependency; events go to the default sinks plus `recorder`"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    def override_emitter():
        return EventEmitter(EventEmitter().sinks + [recorder])

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_event_emitter] = override_emitter
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db_session, email: str, name: str, role: MemberRole) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        name=name,
        password_hash=AuthService.hash_password("TestPassword123"),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def owner(db_session):
    """Platform owner admin; owner of `workspace`"""
    return await _make_user(db_session, "owner@workboard.dev", "Olive Owner", MemberRole.OWNER_ADMIN)


@pytest_asyncio.fixture
async def employee(db_session):
    return await _make_user(db_session, "employee@workboard.dev", "Eli Employee", MemberRole.EMPLOYEE)


@pytest_asyncio.fixture
async def customer(db_session):
    return await _make_user(db_session, "customer@workboard.dev", "Casey Customer", MemberRole.CUSTOMER)


@pytest_asyncio.fixture
async def outsider(db_session):
    """Registered user with no workspace membership"""
    return await _make_user(db_session, "outsider@workboard.dev", "Ollie Outsider", MemberRole.CUSTOMER)


@pytest_asyncio.fixture
async def workspace(db_session, owner, employee, customer):
    ws = Workspace(id=str(uuid.uuid4()), name="Acme Realty", slug="acme-realty")
    db_session.add(ws)
    await db_session.flush()
    for user, role in ((owner, MemberRole.OWNER_ADMIN), (employee, MemberRole.EMPLOYEE), (customer, MemberRole.CUSTOMER)):
        db_session.add(WorkspaceMember(workspace_id=ws.id, user_id=user.id, role=role))
    await db_session.commit()
    return ws


async def make_board(db_session, workspace, creator, is_public: bool = False, name: str = "Pipeline") -> Board:
    """Board with one group ("Todo") and one STATUS column"""
    board = Board(
        id=str(uuid.uuid4()), workspace_id=workspace.id, created_by_id=creator.id,
        name=name, is_public=is_public,
    )
    db_session.add(board)
    await db_session.flush()
    db_session.add(Group(board_id=board.id, name="Todo", position=0))
    db_session.add(BoardColumn(board_id=board.id, name="Status", field_type=FieldType.STATUS, position=0))
    await db_session.commit()
    return board


async def first_group(db_session, board) -> Group:
    from sqlalchemy import select
    return (await db_session.execute(
        select(Group).where(Group.board_id == board.id).order_by(Group.position)
    )).scalars().first()


async def add_tasks(db_session, group, creator, names) -> list:
    tasks = []
    for position, name in enumerate(names):
        task = Task(group_id=group.id, created_by_id=creator.id, name=name, position=position)
        db_session.add(task)
        tasks.append(task)
    await db_session.commit()
    return tasks


async def grant_board(db_session, board, user, can_edit: bool) -> BoardMember:
    member = BoardMember(board_id=board.id, user_id=user.id, can_edit=can_edit)
    db_session.add(member)
    await db_session.commit()
    return member


@pytest_asyncio.fixture
async def board(db_session, workspace, owner):
    """Private board"""
    return await make_board(db_session, workspace, owner)


@pytest_asyncio.fixture
async def public_board(db_session, workspace, owner):
    return await make_board(db_session, workspace, owner, is_public=True, name="Open House")


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value if isinstance(user.role, MemberRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
