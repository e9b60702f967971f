"""
HSSE - Test Infrastructure (conftest.py)
=========================================
Provides:
  - HSSE_TEST_MODE environment setup (scheduler off)
  - Scratch database and upload directory per test session
  - FastAPI TestClient with session cookies
  - One seeded user per role and login helpers
  - DB assertion helpers
"""

import os
import sys
import shutil
import sqlite3
import tempfile
import pytest

# Ensure project root is on path
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT_DIR)

# ============================================================================
# TEST MODE: set before anything imports hsse
# ============================================================================
TEST_DIR = tempfile.mkdtemp(prefix="hsse_test_")
TEST_DB_PATH = os.path.join(TEST_DIR, "hsse_test.db")

os.environ["HSSE_TEST_MODE"] = "1"
os.environ["HSSE_DB_PATH"] = TEST_DB_PATH
os.environ["HSSE_UPLOAD_DIR"] = os.path.join(TEST_DIR, "uploads")
os.environ["HSSE_ADMIN_EMAIL"] = "admin@hsse.test"
os.environ["HSSE_ADMIN_PASSWORD"] = "Admin123!"

PASSWORD = "Passw0rd!"

# email: (name, roles)
TEST_USERS = {
    "admin@hsse.test": ("System Administrator", ["SuperAdmin"]),
    "manager@hsse.test": ("Operations Admin", ["Admin"]),
    "incidents@hsse.test": ("Ivy Incident", ["IncidentManager"]),
    "risk@hsse.test": ("Rory Risk", ["RiskManager"]),
    "ppe@hsse.test": ("Pat Ppe", ["PPEManager"]),
    "health@hsse.test": ("Hana Health", ["HealthMonitor"]),
    "inspector@hsse.test": ("Ines Inspector", ["InspectionManager"]),
    "secmgr@hsse.test": ("Sam Security", ["SecurityManager"]),
    "secofficer@hsse.test": ("Olu Officer", ["SecurityOfficer"]),
    "compliance@hsse.test": ("Cai Compliance", ["ComplianceOfficer"]),
    "reporter@hsse.test": ("Remy Reporter", ["Reporter"]),
    "viewer@hsse.test": ("Vic Viewer", ["Viewer"]),
}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Session-wide test environment setup."""
    yield
    shutil.rmtree(TEST_DIR, ignore_errors=True)


@pytest.fixture(scope="session")
def app():
    """The FastAPI app bound to the scratch database."""
    import main
    return main.app


@pytest.fixture(scope="session")
def client(app):
    """FastAPI TestClient (session-scoped for speed)."""
    from starlette.testclient import TestClient
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture(scope="session")
def seeded_db(client):
    """Create one active user per role; the startup hook already made the SuperAdmin."""
    from hsse.auth.models import create_user, get_user_by_email

    ids = {}
    for email, (name, roles) in TEST_USERS.items():
        existing = get_user_by_email(email)
        if existing:
            ids[email] = existing["id"]
            continue
        ids[email] = create_user({"email": email, "name": name, "password": PASSWORD,
                                  "department": "Operations"}, roles=roles, created_by="tests")
    return ids


# ============================================================================
# Session helpers
# ============================================================================

def login_as(client, email):
    """Log in via the auth endpoint; the client keeps the session cookie."""
    password = "Admin123!" if email == "admin@hsse.test" else PASSWORD
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return client


@pytest.fixture
def admin_session(client, seeded_db):
    """Client authenticated as the SuperAdmin."""
    return login_as(client, "admin@hsse.test")


@pytest.fixture
def manager_session(client, seeded_db):
    """Client authenticated as an Admin (no application settings)."""
    return login_as(client, "manager@hsse.test")


@pytest.fixture
def viewer_session(client, seeded_db):
    """Client authenticated as a dashboard-only Viewer."""
    return login_as(client, "viewer@hsse.test")


@pytest.fixture
def reporter_session(client, seeded_db):
    """Client authenticated as a read-only Reporter."""
    return login_as(client, "reporter@hsse.test")


@pytest.fixture
def anon_client(client):
    """Client with no session."""
    client.post("/api/auth/logout")
    return client


# ============================================================================
# DB helpers
# ============================================================================

def get_test_db():
    """Direct connection to test database for assertions."""
    conn = sqlite3.connect(TEST_DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def db_query(sql, params=()):
    """Run a query against the test DB and return list of dicts."""
    conn = get_test_db()
    rows = conn.execute(sql, params).fetchall()
    result = [dict(r) for r in rows]
    conn.close()
    return result


def db_count(table, where="1=1", params=()):
    """Count rows in a table."""
    conn = get_test_db()
    row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table} WHERE {where}", params).fetchone()
    conn.close()
    return row["cnt"]


def db_execute(sql, params=()):
    """Write directly to the test DB, for backdating rows."""
    conn = get_test_db()
    conn.execute(sql, params)
    conn.commit()
    conn.close()
