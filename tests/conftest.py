from datetime import datetime

import pytest
from sqlalchemy.orm import sessionmaker

from database import Base, create_db_engine
from models import Category, Product
from repository import SqlRepository


@pytest.fixture
def engine():
    engine = create_db_engine('sqlite://')
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine):
    return SqlRepository(sessionmaker(bind=engine))


@pytest.fixture
def nasi_goreng():
    return Product(id='A', name='Nasi Goreng Spesial', price=25000, category=Category.FOOD.value,
                   image='/photo.jpg', stock=5, created_at=datetime(2026, 1, 1, 8, 0))


@pytest.fixture
def es_teh():
    return Product(id='B', name='Teh Manis Dingin', price=5000, category=Category.DRINK.value,
                   image='/teh.png', stock=5, created_at=datetime(2026, 1, 1, 9, 0))


@pytest.fixture
def stocked_repository(repository, nasi_goreng, es_teh):
    repository.create_product(nasi_goreng)
    repository.create_product(es_teh)
    return repository
