from __future__ import annotations

import os
from collections.abc import Callable, Generator
from datetime import timedelta
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salescrm.core.config import get_settings
from salescrm.core.database import Base, get_db
from salescrm.crm.api import get_current_user as crm_get_current_user
from salescrm.crm.enums import AccountStatus, OpportunityStage, Role
from salescrm.crm.models import (
    CRMAccount,
    CRMContact,
    CRMDocument,
    CRMLead,
    CRMOpportunity,
    CRMRegion,
    CRMTask,
    CRMUser,
    CRMUserRegion,
)
from salescrm.main import app
from salescrm.platform.security.context import ActingUser
from support import NOW, Actors, acting


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_state() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def actors() -> Actors:
    return Actors(
        rep=acting(7, Role.SALES_REP, "Rita Rep"),
        other_rep=acting(8, Role.SALES_REP, "Sam Rep"),
        lead=acting(20, Role.REGIONAL_LEAD, "Lena Lead"),
        lead_without_regions=acting(21, Role.REGIONAL_LEAD, "Nora Lead"),
        lead_with_secondary_only=acting(22, Role.REGIONAL_LEAD, "Omar Lead"),
        admin=acting(1, Role.SUPER_ADMIN, "Ada Admin"),
    )


@pytest.fixture()
def seeded(db_session: Session) -> Session:
    """Regions North(5), South(6), West(8) with reps, leads and records spread across them.

    Rep 7 owns accounts 1 and 2; rep 8 owns accounts 3 and 10; account 9 is unowned.
    Accounts 1, 3 and 9 are in North, accounts 2 and 10 in South.
    """

    db_session.add_all(
        [
            CRMRegion(id=5, name="North"),
            CRMRegion(id=6, name="South"),
            CRMRegion(id=8, name="West"),
        ]
    )
    db_session.flush()
    db_session.add_all(
        [
            CRMUser(id=1, name="Ada Admin", email="ada@example.com", role=Role.SUPER_ADMIN.value),
            CRMUser(id=7, name="Rita Rep", email="rita@example.com", role=Role.SALES_REP.value, region_id=5),
            CRMUser(id=8, name="Sam Rep", email="sam@example.com", role=Role.SALES_REP.value, region_id=6),
            CRMUser(id=20, name="Lena Lead", email="lena@example.com", role=Role.REGIONAL_LEAD.value, region_id=5),
            CRMUser(id=21, name="Nora Lead", email="nora@example.com", role=Role.REGIONAL_LEAD.value),
            CRMUser(id=22, name="Omar Lead", email="omar@example.com", role=Role.REGIONAL_LEAD.value),
        ]
    )
    db_session.flush()
    db_session.add(CRMUserRegion(user_id=22, region_id=6))
    db_session.add_all(
        [
            CRMAccount(id=1, name="Acme", region_id=5, sales_rep_id=7, status=AccountStatus.ACTIVE.value),
            CRMAccount(id=2, name="Borealis", region_id=6, sales_rep_id=7, status=AccountStatus.ACTIVE.value),
            CRMAccount(id=3, name="Cobalt", region_id=5, sales_rep_id=8, status=AccountStatus.ACTIVE.value),
            CRMAccount(id=9, name="Delta", region_id=5, status=AccountStatus.PENDING_APPROVAL.value),
            CRMAccount(id=10, name="Evergreen", region_id=6, sales_rep_id=8, status=AccountStatus.PROSPECT.value),
        ]
    )
    db_session.flush()
    db_session.add_all(
        [
            CRMOpportunity(
                id=101,
                name="O1",
                account_id=1,
                stage=OpportunityStage.PROPOSAL.value,
                amount=Decimal("100000"),
                owner_id=7,
                close_date=NOW + timedelta(days=30),
            ),
            CRMOpportunity(
                id=102,
                name="O2",
                account_id=3,
                stage=OpportunityStage.NEGOTIATION.value,
                amount=Decimal("5000"),
                owner_id=8,
                close_date=NOW + timedelta(days=10),
            ),
            CRMContact(id=201, account_id=1, name="Carla Contact"),
            CRMContact(id=202, account_id=10, name="Eddie Contact"),
            CRMLead(id=301, name="Lead North", owner_id=7, region_id=5),
            CRMLead(id=302, name="Lead South", owner_id=8, region_id=6),
            CRMLead(id=303, name="Lead Unowned", region_id=5),
            CRMLead(id=304, name="Lead Crossover", owner_id=8, region_id=5),
        ]
    )
    db_session.flush()
    due = NOW + timedelta(days=3)
    db_session.add_all(
        [
            CRMTask(id=401, subject="Call Acme", due_date=due, related_entity_type="Account", related_entity_id=1, assigned_to_id=8),
            CRMTask(id=402, subject="Visit Evergreen", due_date=due, related_entity_type="Account", related_entity_id=10, assigned_to_id=7),
            CRMTask(id=403, subject="Qualify", due_date=due, related_entity_type="Lead", related_entity_id=302),
            CRMTask(id=404, subject="Send terms", due_date=due, related_entity_type="Opportunity", related_entity_id=102),
            CRMDocument(id=501, name="acme-proposal.pdf", related_entity_type="Account", related_entity_id=1),
            CRMDocument(id=502, name="cobalt-terms.pdf", related_entity_type="Opportunity", related_entity_id=102),
        ]
    )
    db_session.commit()
    return db_session


@pytest.fixture()
def client(seeded: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield seeded

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def act_as() -> Callable[[ActingUser], None]:
    """Switch the caller seen by the CRM routes; each request gets a fresh actor."""

    def use(actor: ActingUser) -> None:
        def override_get_current_user(request: Request) -> ActingUser:
            return ActingUser(
                user_id=actor.user_id,
                role=actor.role,
                name=actor.name,
                correlation_id=getattr(request.state, "correlation_id", None),
            )

        app.dependency_overrides[crm_get_current_user] = override_get_current_user

    return use
