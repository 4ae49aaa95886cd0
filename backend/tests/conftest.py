"""
Pytest fixtures for studio ledger backend tests.

Provides test database setup, two tenants and a test client.
"""

import pytest

from studio_ledger import create_app
from studio_ledger.extensions import db
from studio_ledger.models import Organization


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF_SECONDS': 0,
        'DEFAULT_CURRENCY': 'CHF',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema. Core deletes bypass the ORM
        # guards that keep ledger entries immutable.
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Studio Zurich", code="ZRH", default_currency="CHF", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Studio Basel", code="BSL", default_currency="CHF", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def headers_a(org_a):
    """Tenant headers for Organization A, as forwarded by the gateway."""
    return {'X-Org-Id': str(org_a.id), 'X-Actor': 'anna'}


@pytest.fixture(scope='function')
def headers_b(org_b):
    """Tenant headers for Organization B."""
    return {'X-Org-Id': str(org_b.id), 'X-Actor': 'ben'}
