"""
Pytest fixtures for finance ledger tests.

Provides the application on an in-memory database, a per-test clean
session, and small factories for the reference data most tests need.
"""

from datetime import date

import pytest

from bursar import create_app
from bursar.extensions import db
from bursar.services import account_service, bank_service, settings_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'DB_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        settings_service.ensure_settings_seeded()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def financial_year(db_session):
    """Current, active 2026 financial year."""
    return account_service.create_financial_year(
        "FY2026", date(2026, 1, 1), date(2026, 12, 31), status="active", make_current=True
    )


@pytest.fixture(scope='function')
def income_account(db_session):
    return account_service.create_account("INC-001", "Student Fees", "income")


@pytest.fixture(scope='function')
def expense_account(db_session):
    return account_service.create_account("EXP-001", "Teaching Supplies", "expense")


@pytest.fixture(scope='function')
def make_bank_account(db_session):
    """Factory: make_bank_account(opening_balance_cents, account_number=None)."""
    counter = {"n": 0}

    def _make(opening_balance_cents=0, account_number=None, **kwargs):
        counter["n"] += 1
        return bank_service.create_bank_account(
            name=kwargs.pop("name", f"Account {counter['n']}"),
            account_number=account_number or f"0100{counter['n']:04d}",
            bank_name=kwargs.pop("bank_name", "KCB"),
            opening_balance_cents=opening_balance_cents,
            **kwargs,
        )

    return _make
