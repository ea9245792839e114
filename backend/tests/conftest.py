"""
Pytest 配置和共享 fixtures
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import date, datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from app.database import Base, get_db
from app.models import ontology  # noqa: F401
from app.models.ontology import Yatra, Pilgrim, ActorKind
from app.models.schemas import HotelCreate, RegistrationCreate
from app.security.actor import Actor
from app.security.auth import create_access_token
from app.services.hotel_service import HotelService
from app.services.registration_service import RegistrationService
from app.main import app


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ============== 身份相关 Fixtures ==============

@pytest.fixture
def admin_actor():
    """后台管理员"""
    return Actor.admin(1, ip_address="10.0.0.1", user_agent="pytest")


@pytest.fixture
def admin_auth_headers():
    """管理员认证的请求头"""
    return {"Authorization": f"Bearer {create_access_token(1, ActorKind.ADMIN)}"}


@pytest.fixture
def user_auth_headers():
    """自助用户认证的请求头"""
    return {"Authorization": f"Bearer {create_access_token(42, ActorKind.USER)}"}


# ============== 实体相关 Fixtures ==============

@pytest.fixture
def sample_yatra(db_session):
    """创建测试活动"""
    yatra = Yatra(
        name="Vaishno Devi 2026",
        start_date=datetime(2026, 11, 1),
        end_date=datetime(2026, 11, 7),
    )
    db_session.add(yatra)
    db_session.commit()
    db_session.refresh(yatra)
    return yatra


@pytest.fixture
def other_yatra(db_session):
    """创建另一个活动"""
    yatra = Yatra(name="Kedarnath 2026")
    db_session.add(yatra)
    db_session.commit()
    db_session.refresh(yatra)
    return yatra


def hotel_payload(yatra_id: int, name: str = "Shree Niwas") -> dict:
    """两层共 5 间房的酒店"""
    return {
        "yatra_id": yatra_id,
        "name": name,
        "address": "Katra",
        "floors": [
            {"floor_number": "1", "room_numbers": ["101", "102", "103"]},
            {"floor_number": "2", "room_numbers": ["201", "202"]},
        ],
    }


@pytest.fixture
def sample_hotel(db_session, sample_yatra):
    """创建测试酒店（5 间房）"""
    return HotelService(db_session).create_hotel(HotelCreate(**hotel_payload(sample_yatra.id)))


@pytest.fixture
def second_hotel(db_session, sample_yatra):
    """创建第二家酒店"""
    return HotelService(db_session).create_hotel(
        HotelCreate(**hotel_payload(sample_yatra.id, name="Ganga Lodge"))
    )


@pytest.fixture
def make_pilgrim(db_session):
    """朝圣者工厂"""
    def _make(pnr: str, name: str = "Pilgrim") -> Pilgrim:
        pilgrim = Pilgrim(pnr=pnr, name=name, number_of_persons=1)
        db_session.add(pilgrim)
        db_session.commit()
        db_session.refresh(pilgrim)
        return pilgrim
    return _make


def registration_payload(yatra_id: int, pnr: str = "4829635210", persons: int = 3) -> dict:
    """报名请求数据"""
    return {
        "yatra_id": yatra_id,
        "pnr": pnr,
        "name": "Ramesh Kumar",
        "whatsapp_number": "9876543210",
        "number_of_persons": persons,
        "boarding_point": {"city": "Delhi", "state": "Delhi"},
        "arrival_date": date(2026, 11, 1).isoformat(),
        "return_date": date(2026, 11, 5).isoformat(),
        "ticket_images": ["https://img.example/ticket-1.jpg"],
        "persons": [
            {"name": f"Traveller {i}", "age": 30 + i, "gender": "male" if i % 2 else "female"}
            for i in range(1, persons + 1)
        ],
    }


@pytest.fixture
def sample_registration(db_session, sample_yatra):
    """创建待审核报名"""
    return RegistrationService(db_session).create(
        RegistrationCreate(**registration_payload(sample_yatra.id))
    )


@pytest.fixture
def registration_data(sample_yatra):
    """报名请求数据工厂（默认属于 sample_yatra）"""
    def _data(pnr: str = "4829635210", persons: int = 3, yatra_id: int = None) -> dict:
        return registration_payload(yatra_id or sample_yatra.id, pnr=pnr, persons=persons)
    return _data


@pytest.fixture
def hotel_data(sample_yatra):
    """酒店请求数据工厂（默认属于 sample_yatra）"""
    def _data(name: str = "Shree Niwas", yatra_id: int = None) -> dict:
        return hotel_payload(yatra_id or sample_yatra.id, name=name)
    return _data
