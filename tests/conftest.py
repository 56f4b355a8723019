import os, tempfile
from datetime import datetime, timedelta
from types import SimpleNamespace

# must be set before the app (and its engine) is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUDIT_DIR"] = tempfile.mkdtemp(prefix="od-audit-")
os.environ["PUSH_ENABLED"] = "0"

import pytest
from fastapi.testclient import TestClient

from backend.main import app as api_app
from app.core.database import Base, engine, SessionLocal
from app.core.security import create_access_token
from app.crud import directory, flow as flow_store, group_approver
from app.models.enums import ODCategory, RequestType, Role, UserRole
from app.schemas.request import RequestCreate
from app.services.workflow import ApprovalWorkflow


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)

    def of_type(self, kind):
        return [n for n in self.sent if n.data.get("type") == kind]


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def recorder():
    rec = RecordingNotifier()
    previous = api_app.state.notifier
    api_app.state.notifier = rec
    yield rec
    api_app.state.notifier = previous


@pytest.fixture
def workflow(db, recorder):
    return ApprovalWorkflow(db, notifier=recorder)


@pytest.fixture
def client(db, recorder):
    return TestClient(api_app)


@pytest.fixture
def world(db):
    """
    Two groups sharing one HOD.

    G1: TUTOR=alice, HOD=bob, LAB_INCHARGE=carol   students s1, s3
    G2: TUTOR=dave,  HOD=bob, LAB_INCHARGE=carol   student  s2
    NoLabFlow = [TUTOR, HOD], LabFlow = [TUTOR, LAB_INCHARGE, HOD]
    """
    dept = directory.create_department(db, "CSE")
    g1 = directory.create_group(db, "CSE-A", section="A", batch="2026", department_id=dept.id)
    g2 = directory.create_group(db, "CSE-B", section="B", batch="2026", department_id=dept.id)

    def teacher(name):
        u = directory.create_user(db, f"{name}@college.edu", name.title(), UserRole.TEACHER)
        return u, directory.create_teacher(db, u.id, dept.id)

    def student(name, group, roll):
        u = directory.create_user(db, f"{name}@college.edu", name.title(), UserRole.STUDENT)
        return u, directory.create_student(db, u.id, group.id, roll)

    alice, t_alice = teacher("alice")
    bob, t_bob = teacher("bob")
    carol, t_carol = teacher("carol")
    dave, t_dave = teacher("dave")
    admin = directory.create_user(db, "admin@college.edu", "Admin", UserRole.ADMIN)

    u1, s1 = student("sam", g1, "21CS001")
    u2, s2 = student("sara", g2, "21CS002")
    u3, s3 = student("sid", g1, "21CS003")

    for g, tutor in ((g1, t_alice), (g2, t_dave)):
        group_approver.assign_approver(db, g.id, tutor.id, Role.TUTOR)
        group_approver.assign_approver(db, g.id, t_bob.id, Role.HOD)
        group_approver.assign_approver(db, g.id, t_carol.id, Role.LAB_INCHARGE)

    no_lab = flow_store.create_template(db, "NoLabFlow", [Role.TUTOR, Role.HOD])
    lab_flow = flow_store.create_template(db, "LabFlow", [Role.TUTOR, Role.LAB_INCHARGE, Role.HOD])
    lab = directory.create_lab(db, "AI Lab", dept.id)

    return SimpleNamespace(
        dept=dept, g1=g1, g2=g2, lab=lab,
        alice=alice, bob=bob, carol=carol, dave=dave, admin=admin,
        t_alice=t_alice, t_bob=t_bob, t_carol=t_carol, t_dave=t_dave,
        u1=u1, u2=u2, u3=u3, s1=s1, s2=s2, s3=s3,
        no_lab=no_lab, lab_flow=lab_flow,
    )


def _make_request(**overrides) -> RequestCreate:
    start = datetime(2026, 11, 3, 9, 0)
    data = dict(
        type=RequestType.OD,
        category=ODCategory.SYMPOSIUM,
        reason="Paper presentation",
        start_date=start,
        end_date=start + timedelta(days=1),
    )
    data.update(overrides)
    return RequestCreate(**data)


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def od_request():
    """Builder for a valid one-day OD payload; keyword overrides win."""
    return _make_request


@pytest.fixture
def auth():
    return _auth
