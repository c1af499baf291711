import pytest
from dataclasses import dataclass
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from livechat.main import app
from livechat.actions.schemas import serialize_json_field
from livechat.core.security import create_access_token
from livechat.db.database import Base, enable_sqlite_foreign_keys, get_db
from livechat.db.enums import ProjectRole
from livechat.db.models import (
    ActionTemplate,
    Conversation,
    Project,
    ProjectMember,
    User,
    Visitor,
)

# On-disk SQLite so concurrent sessions (race tests) really use separate connections.
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_concurrency.db"

CONTACT_DEFINITION = {
    "fields": [
        {"key": "name", "label": "Name", "type": "text", "required": True},
        {"key": "age", "label": "Age", "type": "number", "required": False},
        {"key": "plan", "label": "Plan", "type": "select", "required": False, "options": ["basic", "pro"]},
    ]
}


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture(scope="session", autouse=True)
async def override_get_db_for_app(test_engine):
    """Point the app's get_db at the test engine for the whole session; one fresh session per request."""
    async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def _override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
async def clean_tables(test_engine):
    """Ensure DB is empty before each test by deleting from all tables (keep schema intact)."""
    async with test_engine.begin() as conn:
        # delete in reverse order to respect FK constraints
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@dataclass
class World:
    project: Project
    other_project: Project
    manager: User
    agent: User
    outsider: User
    visitor: Visitor
    other_visitor: Visitor
    conversation: Conversation
    other_conversation: Conversation


def _auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


def _visitor_headers(visitor: Visitor) -> dict:
    return {"X-Visitor-Id": visitor.visitor_uid}


async def _make_template(
    session: AsyncSession,
    project: Project,
    name: str = "Contact details",
    definition: dict = None,
    is_enabled: bool = True,
    description: str = None,
) -> ActionTemplate:
    template = ActionTemplate(
        project_id=project.id,
        name=name,
        description=description,
        definition=serialize_json_field(definition or CONTACT_DEFINITION),
        is_enabled=is_enabled,
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)
    return template


@pytest.fixture
async def world(test_session) -> World:
    project = Project(name="Acme")
    other_project = Project(name="Globex")
    manager = User(email="manager@acme.test", display_name="Manager")
    agent = User(email="agent@acme.test", display_name="Agent")
    outsider = User(email="outsider@globex.test", display_name="Outsider")
    test_session.add_all([project, other_project, manager, agent, outsider])
    await test_session.flush()

    test_session.add_all([
        ProjectMember(project_id=project.id, user_id=manager.id, role=ProjectRole.manager),
        ProjectMember(project_id=project.id, user_id=agent.id, role=ProjectRole.agent),
        ProjectMember(project_id=other_project.id, user_id=outsider.id, role=ProjectRole.manager),
    ])

    visitor = Visitor(project_id=project.id, visitor_uid="visitor-abc", display_name="Visitor")
    other_visitor = Visitor(project_id=project.id, visitor_uid="visitor-xyz", display_name="Other visitor")
    test_session.add_all([visitor, other_visitor])
    await test_session.flush()

    conversation = Conversation(project_id=project.id, visitor_id=visitor.id)
    other_conversation = Conversation(project_id=project.id, visitor_id=other_visitor.id)
    test_session.add_all([conversation, other_conversation])
    await test_session.commit()

    return World(
        project=project,
        other_project=other_project,
        manager=manager,
        agent=agent,
        outsider=outsider,
        visitor=visitor,
        other_visitor=other_visitor,
        conversation=conversation,
        other_conversation=other_conversation,
    )


class RecordingNotifier:
    """Collects engine events instead of delivering them."""

    def __init__(self):
        self.requests = []
        self.submissions = []

    def form_request_sent(self, conversation_id, project_id, visitor_uid, message):
        self.requests.append((conversation_id, project_id, visitor_uid, message))

    def form_submitted(self, conversation_id, submission_id, message):
        self.submissions.append((conversation_id, submission_id, message))


class ExplodingNotifier:
    def form_request_sent(self, *args):
        raise RuntimeError("socket server down")

    def form_submitted(self, *args):
        raise RuntimeError("socket server down")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def exploding_notifier():
    return ExplodingNotifier()


@pytest.fixture
def auth_headers():
    return _auth_headers


@pytest.fixture
def visitor_headers():
    return _visitor_headers


@pytest.fixture
def make_template(test_session):
    async def _make(project, **kwargs):
        return await _make_template(test_session, project, **kwargs)
    return _make


@pytest.fixture
def contact_definition():
    return CONTACT_DEFINITION
