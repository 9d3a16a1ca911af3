# D:\3xDigital\settlement\models\database.py
"""
database.py

Este módulo define a base declarativa, as entidades de identidade (usuários e
produtos) e os métodos para criação e interação com o banco de dados de forma
assíncrona.

Classes:
    User: Representa um usuário (administrador ou produtor).
    Product: Representa um produto vendido por um produtor.

Functions:
    create_database(db_url: str) -> None:
        Cria o schema do banco de dados assíncrono, se não existir.

    get_async_engine(db_url: str):
        Retorna o motor assíncrono configurado para o banco de dados.

    get_session_maker(engine):
        Retorna o criador de sessões assíncronas para o banco de dados.
"""

from sqlalchemy import Column, Integer, String, Enum, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from settlement.config.settings import TIMEZONE

Base = declarative_base()


class User(Base):
    """
    Representa um usuário no sistema.

    Attributes:
        id (int): ID único do usuário.
        name (str): Nome do usuário.
        email (str): Email do usuário, único.
        role (Enum): Papel do usuário (admin, producer).
        active (bool): Indica se o usuário está ativo.
        created_at (datetime): Data de criação do registro.
    """
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(Enum('admin', 'producer', name='user_roles'), nullable=False)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=TIMEZONE)

    products = relationship("Product", back_populates="producer")


class Product(Base):
    """
    Representa um produto vendido por um produtor.

    Attributes:
        id (int): ID único do produto.
        producer_id (int): ID do produtor dono do produto.
        name (str): Nome do produto.
        price_cents (int): Preço em centavos.
        created_at (datetime): Data de criação do registro.
    """
    __tablename__ = 'products'
    id = Column(Integer, primary_key=True, autoincrement=True)
    producer_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    name = Column(String(255), nullable=False)
    price_cents = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=TIMEZONE)

    producer = relationship("User", back_populates="products")


# ========== Métodos para criação do banco de dados de forma assíncrona ==========

async def create_database(db_url: str = "sqlite+aiosqlite:///./settlement.db"):
    """
    Cria o schema no banco de dados assíncrono, se não existir.

    Args:
        db_url (str): URL do banco de dados. O padrão é um SQLite local.
    """
    engine = create_async_engine(db_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


def get_async_engine(db_url: str = "sqlite+aiosqlite:///./settlement.db"):
    """
    Retorna o motor assíncrono configurado para o banco de dados.

    Args:
        db_url (str): URL do banco de dados. O padrão é um SQLite local.

    Returns:
        AsyncEngine: Instância do motor assíncrono.
    """
    return create_async_engine(db_url, echo=False)


def get_session_maker(engine):
    """
    Retorna o criador de sessões assíncronas para o banco de dados.

    Args:
        engine: Instância do motor do banco de dados.

    Returns:
        async_sessionmaker: Criador de sessões assíncronas.
    """
    return async_sessionmaker(bind=engine, expire_on_commit=False)

# Importação no final para registrar os modelos financeiros no metadata sem referência circular
from settlement.models import finance_models  # noqa: E402,F401
