from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.database import Base
import storefront.models  # noqa: F401
from storefront.models.coupon import Coupon
from storefront.models.product import Product, ProductVariant
from storefront.models.users import Address, User
from storefront.models.wallet import RewardRule, WalletConfig
from tests.fakes import FakeCarrier, FakeGateway, FakeNotifier


@pytest.fixture
def engine(tmp_path):
    # File-backed so several sessions can see each other's commits
    engine = create_engine(f"sqlite:///{tmp_path / 'storefront.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def carrier():
    return FakeCarrier()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def customer(db):
    user = User(email="asha@example.com", role="customer", full_name="Asha Rao", wallet_balance=0)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def other_customer(db):
    user = User(email="vikram@example.com", role="customer", full_name="Vikram Shah", wallet_balance=0)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db):
    user = User(email="admin@example.com", role="admin", full_name="Store Admin")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def address(db, customer):
    addr = Address(
        user_id=customer.id,
        full_name="Asha Rao",
        phone="9876543210",
        street="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        postal_code="560001",
        country="India",
        is_default=True,
    )
    db.add(addr)
    db.commit()
    return addr


@pytest.fixture
def mug(db):
    product = Product(name="Clay Mug", slug="clay-mug", price=Decimal("500"), stock_quantity=10, weight=0.4, length=12, breadth=12, height=14)
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def tshirt(db):
    product = Product(name="Block Print Tee", slug="block-print-tee", price=Decimal("999"), stock_quantity=0)
    product.variants = [
        ProductVariant(sku="TEE-M-RED", size="M", color="Red", price=Decimal("799"), sale_price=Decimal("699"), stock_quantity=3, weight=0.25),
        ProductVariant(sku="TEE-L-BLU", size="L", color="Blue", price=Decimal("849"), stock_quantity=1),
    ]
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def consultation(db):
    product = Product(name="Interior Consultation", slug="interior-consultation", price=Decimal("1500"), stock_quantity=5, is_service=True)
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def coupon(db):
    c = Coupon(code="FESTIVE10", discount_percentage=Decimal("10"), is_active=True)
    db.add(c)
    db.commit()
    return c


@pytest.fixture
def reward_rules(db):
    config = WalletConfig(rupees_per_point=Decimal("1"))
    config.reward_rules = [
        RewardRule(min_spend=Decimal("500"), points_awarded=10),
        RewardRule(min_spend=Decimal("1000"), points_awarded=20),
    ]
    db.add(config)
    db.commit()
    return config
