"""
Shared pytest fixtures for the Precast Kanban test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - regular_pipeline: two regular stages, the first QC-gated
    - window_pipeline: Mesh & Mould + Reinforcement window, then a regular stage

Row helpers live in factories.py.
"""

import pytest

from factories import make_path, make_project, make_stage
from precast import create_app
from precast.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Pipelines ────────────────────────────────────────────────────────────


@pytest.fixture()
def regular_pipeline():
    """
    Stage 10 "Cutting":  assignee 1, QC 11 (qc_assign), paper 101
    Stage 20 "Casting":  assignee 2, QC 12, paper 202
    Path of element type 100: [10, 20]
    """
    make_project()
    make_stage(10, "Cutting", assigned_to=1, qc_id=11, qc_assign=True, paper_id=101)
    make_stage(20, "Casting", assigned_to=2, qc_id=12, paper_id=202)
    make_path(100, [10, 20])
    _db.session.commit()
    return [10, 20]


@pytest.fixture()
def window_pipeline():
    """
    Stage 30 "Mesh & Mould":   assignee 3, QC 13 (qc_assign)
    Stage 40 "Reinforcement":  assignee 4, QC 14 (qc_assign)
    Stage 50 "Curing":         assignee 5, QC 15, paper 501
    Path of element type 100: [30, 40, 50]
    """
    make_project()
    make_stage(30, "Mesh & Mould", assigned_to=3, qc_id=13, qc_assign=True, paper_id=301)
    make_stage(40, "Reinforcement", assigned_to=4, qc_id=14, qc_assign=True, paper_id=401)
    make_stage(50, "Curing", assigned_to=5, qc_id=15, paper_id=501)
    make_path(100, [30, 40, 50])
    _db.session.commit()
    return [30, 40, 50]
