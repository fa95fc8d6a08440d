# tests/conftest.py
from datetime import date

import pytest
from sqlalchemy import create_engine

from src.io.db_io import (
    GlobalProduct,
    InternalProduct,
    InventorySnapshot,
    Order,
    Pharmacy,
    ProductOrder,
    Sale,
    create_schema,
    make_session_factory,
)


@pytest.fixture
def engine(tmp_path):
    # Файл, а не :memory: - периоды считаются в разных потоках, каждому нужно своё соединение
    db_engine = create_engine(
        f"sqlite:///{tmp_path / 'dashboard.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    create_schema(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


def seed_dashboard(session) -> None:
    """
    Две аптеки, три EAN13, четыре товара.

    Январь 2024 - основной период, январь 2023 - период сравнения.
    Последние снимки (без ограничения датой):
      p1-a: 3.2 / 1.6   p1-b: 15.0 / 9.0 (остаток 0)   p2-a: 3.6 / 1.6   p2-c: 8.0 / нет себестоимости
    """
    session.add_all(
        [
            Pharmacy(id="P1", name="Pharmacie du Centre", area="Île-de-France", ca=1_200_000, employees_count=8),
            Pharmacy(id="P2", name="Pharmacie de la Gare", area="Occitanie", ca=800_000, employees_count=5),
            GlobalProduct(
                code_13_ref="3400000000001",
                name="Doliprane 1000mg",
                universe="Médicament",
                category="Antalgique",
                brand_lab="Sanofi",
            ),
            GlobalProduct(
                code_13_ref="3400000000002",
                name="Default Name",
                universe="Parapharmacie",
                category="Soin visage",
                brand_lab="Avène",
            ),
            GlobalProduct(code_13_ref="3400000000003", name="Vitamine C 500", brand_lab="Upsa"),
            InternalProduct(id="p1-a", pharmacy_id="P1", code_13_ref_id="3400000000001", name="DOLIPRANE 1G", tva=2.1),
            InternalProduct(id="p1-b", pharmacy_id="P1", code_13_ref_id="3400000000002", name="CREME AVENE", tva=20.0),
            InternalProduct(id="p2-a", pharmacy_id="P2", code_13_ref_id="3400000000001", name="DOLIPRANE", tva=2.1),
            InternalProduct(id="p2-c", pharmacy_id="P2", code_13_ref_id="3400000000003", name="VIT C", tva=5.5),
            Order(id="O1", pharmacy_id="P1", sent_date=date(2024, 1, 10)),
            Order(id="O2", pharmacy_id="P2", sent_date=date(2024, 1, 20)),
            Order(id="O3", pharmacy_id="P1", sent_date=date(2023, 1, 15)),
        ]
    )
    session.flush()

    session.add_all(
        [
            ProductOrder(order_id="O1", product_id="p1-a", quantity=10, bonus_quantity=2, received_quantity=12),
            ProductOrder(order_id="O1", product_id="p1-b", quantity=5, bonus_quantity=0, received_quantity=3),
            ProductOrder(order_id="O2", product_id="p2-a", quantity=8, bonus_quantity=0, received_quantity=8),
            ProductOrder(order_id="O2", product_id="p2-c", quantity=4, bonus_quantity=0, received_quantity=0),
            ProductOrder(order_id="O3", product_id="p1-a", quantity=5, bonus_quantity=0, received_quantity=5),
            InventorySnapshot(
                id=1, product_id="p1-a", date=date(2023, 12, 31), stock=20, price_with_tax=3.0, weighted_average_price=1.5
            ),
            InventorySnapshot(
                id=2, product_id="p1-a", date=date(2024, 2, 1), stock=30, price_with_tax=3.2, weighted_average_price=1.6
            ),
            InventorySnapshot(
                id=3, product_id="p1-b", date=date(2024, 2, 1), stock=0, price_with_tax=15.0, weighted_average_price=9.0
            ),
            InventorySnapshot(
                id=4, product_id="p2-a", date=date(2024, 2, 1), stock=10, price_with_tax=3.6, weighted_average_price=1.6
            ),
            InventorySnapshot(
                id=5, product_id="p2-c", date=date(2024, 1, 31), stock=6, price_with_tax=8.0, weighted_average_price=None
            ),
        ]
    )
    session.flush()

    session.add_all(
        [
            Sale(product_id=2, date=date(2024, 1, 15), quantity=4),
            Sale(product_id=3, date=date(2024, 1, 16), quantity=2),
            Sale(product_id=4, date=date(2024, 1, 17), quantity=5),
            Sale(product_id=1, date=date(2023, 1, 20), quantity=3),
        ]
    )


@pytest.fixture
def seeded_factory(session_factory):
    with session_factory() as session:
        seed_dashboard(session)
    return session_factory
