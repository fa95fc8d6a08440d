from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator

import pandas as pd
from sqlalchemy import Column, Date, Float, ForeignKey, Integer, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from src.config import config

logger = logging.getLogger(__name__)

engine = create_engine(config.database.url, echo=config.database.echo, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

Base = declarative_base()

SessionFactory = Callable[[], ContextManager[Session]]


class Pharmacy(Base):
    __tablename__ = "data_pharmacy"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    area = Column(String, nullable=True)  # регион
    ca = Column(Float, nullable=True)  # оборот (вилка CA)
    employees_count = Column(Integer, nullable=True)
    address = Column(String, nullable=True)


class GlobalProduct(Base):
    """
    Справочник товаров по EAN13, общий для всех аптек.
    Колонки сегментации совпадают с допустимыми segmentType.
    """
    __tablename__ = "data_globalproduct"

    code_13_ref = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    universe = Column(String, nullable=True)
    category = Column(String, nullable=True)
    sub_category = Column(String, nullable=True)
    brand_lab = Column(String, nullable=True)
    lab_distributor = Column(String, nullable=True)
    family = Column(String, nullable=True)
    sub_family = Column(String, nullable=True)
    range_name = Column(String, nullable=True)
    specificity = Column(String, nullable=True)


class InternalProduct(Base):
    """
    Товар в конкретной аптеке.
    """
    __tablename__ = "data_internalproduct"

    id = Column(String, primary_key=True)
    pharmacy_id = Column(String, ForeignKey("data_pharmacy.id"), index=True)
    code_13_ref_id = Column(String, ForeignKey("data_globalproduct.code_13_ref"), index=True, nullable=True)
    name = Column(String, nullable=True)
    tva = Column("TVA", Float, nullable=True)  # ставка НДС, %


class Order(Base):
    __tablename__ = "data_order"

    id = Column(String, primary_key=True)
    pharmacy_id = Column(String, ForeignKey("data_pharmacy.id"), index=True)
    sent_date = Column(Date, index=True, nullable=False)


class ProductOrder(Base):
    """
    Строка заказа. qte_r может быть меньше qte + qte_ug - разница и есть дефектура.
    """
    __tablename__ = "data_productorder"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("data_order.id"), index=True, nullable=False)
    product_id = Column(String, ForeignKey("data_internalproduct.id"), index=True, nullable=False)
    quantity = Column("qte", Integer, nullable=False, default=0)
    bonus_quantity = Column("qte_ug", Integer, nullable=False, default=0)  # бесплатные единицы
    received_quantity = Column("qte_r", Integer, nullable=False, default=0)


class InventorySnapshot(Base):
    __tablename__ = "data_inventorysnapshot"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String, ForeignKey("data_internalproduct.id"), index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)
    stock = Column(Float, nullable=True)
    price_with_tax = Column(Float, nullable=True)
    weighted_average_price = Column(Float, nullable=True)


class Sale(Base):
    """
    Продажа. product_id ссылается на снимок склада (цена на момент продажи), а не на товар.
    """
    __tablename__ = "data_sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("data_inventorysnapshot.id"), index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)


@contextmanager
def get_session() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def make_session_factory(bind: Engine) -> SessionFactory:
    """
    Фабрика get_session-подобных контекстных менеджеров для произвольного engine
    (тесты, отдельные скрипты).
    """
    maker = sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)

    @contextmanager
    def _session_scope() -> Iterator[Session]:
        session: Session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _session_scope


def create_schema(bind: Engine | None = None) -> None:
    Base.metadata.create_all(bind=bind or engine)


def _normalize_column_name(name: str) -> str:
    """
    Нормализует название колонки: Unicode-дефисы -> ASCII, пробелы -> '_', нижний регистр.
    Excel часто использует non-breaking hyphen.
    """
    for char in ("\u2011", "\u2010", "\u2212", "\uFE58", "\u2013"):
        name = name.replace(char, "-")
    return name.strip().lower().replace(" ", "_").replace("-", "_")


TABLE_DATE_COLUMNS = {
    "data_order": ["sent_date"],
    "data_inventorysnapshot": ["date"],
    "data_sales": ["date"],
}

# колонка в выгрузке -> колонка таблицы, где они расходятся
COLUMN_ALIASES = {
    "tva": "TVA",
    "ean13": "code_13_ref",
    "bonus_quantity": "qte_ug",
    "received_quantity": "qte_r",
}


def load_table_from_file(path: str, table: str, bind: Engine | None = None, sheet_name: str | int = 0) -> int:
    """
    Загружает выгрузку (CSV или xlsx) в одну из таблиц дашборда.

    Лишние колонки отбрасываются, недостающие остаются NULL.
    Строки добавляются (append), существующие данные не трогаем.
    Возвращает количество загруженных строк.
    """
    if table not in Base.metadata.tables:
        raise ValueError(f"Unknown table: {table}")

    if str(path).lower().endswith((".xlsx", ".xls")):
        df = pd.read_excel(path, sheet_name=sheet_name, dtype=str)
    else:
        df = pd.read_csv(path, dtype=str)

    df.columns = [_normalize_column_name(str(c)) for c in df.columns]
    df = df.rename(columns=COLUMN_ALIASES)

    target_columns = [c.name for c in Base.metadata.tables[table].columns]
    available = [c for c in target_columns if c in df.columns]
    df = df[available].copy()

    # читаем всё строками (EAN13 не должны превращаться в числа), числа приводим по типу колонки
    for column in Base.metadata.tables[table].columns:
        if column.name in df.columns and isinstance(column.type, (Integer, Float)):
            df[column.name] = pd.to_numeric(df[column.name], errors="coerce")

    for col in TABLE_DATE_COLUMNS.get(table, []):
        if col in df.columns:
            df[col] = pd.to_datetime(df[col]).dt.date

    df.to_sql(table, con=bind or engine, if_exists="append", index=False)
    logger.info("Loaded %s rows into %s from %s", len(df), table, path)
    return len(df)
