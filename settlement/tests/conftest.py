# D:\3xDigital\settlement\tests\conftest.py

"""
conftest.py

Este módulo contém fixtures para configuração de banco de dados e cliente de teste
utilizados nos testes do núcleo de liquidação.

Fixtures:
    setup_database: Cria o schema em um banco SQLite temporário.
    session_maker: Criador de sessões ligado ao banco de teste.
    async_db_session: Sessão assíncrona com as configurações da plataforma semeadas.
    test_client_fixture: Cliente de teste para a aplicação AIOHTTP.
    admin_user, producer_user, other_producer, product: Dados básicos de identidade.
"""

import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer, TestClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from settlement.config.settings import DB_SESSION_KEY
from settlement.models.database import Base, User, Product
from settlement.services.fee_settings_service import ensure_platform_settings
from settlement.views.dashboard_views import routes as dashboard_routes
from settlement.views.finance_views import routes as finance_routes
from settlement.views.settings_views import routes as settings_routes
from settlement.views.webhook_views import routes as webhook_routes


@pytest_asyncio.fixture(scope="function")
async def setup_database(tmp_path):
    """
    Configura um banco SQLite em arquivo temporário, compartilhado entre as
    sessões do teste e as sessões abertas pelas rotas.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement_test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(setup_database):
    return async_sessionmaker(bind=setup_database, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def bare_db_session(session_maker):
    """
    Sessão sem a linha de configurações da plataforma.
    """
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def async_db_session(session_maker):
    """
    Configura uma sessão de banco de dados assíncrona para testes, com as
    configurações padrão da plataforma já criadas.

    Yields:
        AsyncSession: Sessão de banco de dados assíncrona.
    """
    async with session_maker() as session:
        await ensure_platform_settings(session)
        yield session


@pytest_asyncio.fixture(scope="function")
async def test_client_fixture(session_maker, async_db_session):
    """
    Configura um cliente de teste para a aplicação AIOHTTP.

    Yields:
        TestClient: Cliente de teste configurado para a aplicação.
    """
    app = web.Application()
    app[DB_SESSION_KEY] = session_maker

    app.add_routes(finance_routes)
    app.add_routes(settings_routes)
    app.add_routes(dashboard_routes)
    app.add_routes(webhook_routes)

    server = TestServer(app)
    client = TestClient(server)

    async with server, client:
        yield client


async def _create_user(session, name, email, role):
    user = User(name=name, email=email, role=role)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    # Desanexado: um rollback dentro dos serviços não expira os dados da fixture
    session.expunge(user)
    return user


@pytest_asyncio.fixture
async def admin_user(async_db_session):
    return await _create_user(async_db_session, "Admin", "admin@example.com", "admin")


@pytest_asyncio.fixture
async def producer_user(async_db_session):
    return await _create_user(async_db_session, "Produtor Um", "produtor1@example.com", "producer")


@pytest_asyncio.fixture
async def other_producer(async_db_session):
    return await _create_user(async_db_session, "Produtor Dois", "produtor2@example.com", "producer")


@pytest_asyncio.fixture
async def product(async_db_session, producer_user):
    item = Product(producer_id=producer_user.id, name="Curso de Python", price_cents=10000)
    async_db_session.add(item)
    await async_db_session.commit()
    await async_db_session.refresh(item)
    async_db_session.expunge(item)
    return item
