# D:\3xDigital\settlement\config\settings.py

"""
settings.py

Este módulo contém as configurações principais do núcleo de liquidação, incluindo
variáveis de ambiente, banco de dados, chave JWT, fuso horário, gateway ativo e os
valores padrão usados para semear as configurações de taxas da plataforma.

Configurações:
    JWT_SECRET_KEY: Chave secreta para assinar tokens JWT.
    DATABASE_URL: URL de conexão com o banco de dados assíncrono.
    JWT_EXPIRATION_MINUTES: Tempo de expiração dos tokens JWT, em minutos.
    DB_SESSION_KEY: Chave para armazenar o criador de sessões na aplicação.
    TIMEZONE_NAME: Fuso horário do calendário de negócio.
    ACTIVE_PAYMENT_GATEWAY: Gateway usado quando nenhum está ativo no banco.
    RESERVE_SWEEP_INTERVAL_SECONDS: Intervalo da varredura periódica (0 desativa).
    LOG_LEVEL: Nível de log da aplicação.
    CORS_ORIGINS: Origens liberadas no CORS.
    DEFAULT_FEE_SETTINGS: Valores iniciais da linha de configurações da plataforma.
"""

from dotenv import load_dotenv
import os
from datetime import datetime
from zoneinfo import ZoneInfo
from aiohttp import web
from sqlalchemy.ext.asyncio import async_sessionmaker

# Carrega as variáveis do arquivo .env
load_dotenv()

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "default_secret_key")
"""
str: Chave secreta usada para assinar e verificar tokens JWT.
Carregada de uma variável de ambiente ou definida como um valor padrão para desenvolvimento.
"""

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./settlement.db")
"""
str: URL de conexão com o banco de dados assíncrono.
"""

JWT_EXPIRATION_MINUTES = int(os.getenv("JWT_EXPIRATION_MINUTES", 60))
"""
int: Tempo de expiração dos tokens JWT, em minutos.
"""

TIMEZONE_NAME = os.getenv("TIMEZONE_NAME", "America/Sao_Paulo")
"""
str: Nome do fuso horário usado para datas de pagamento e de liberação.
"""

ACTIVE_PAYMENT_GATEWAY = os.getenv("ACTIVE_PAYMENT_GATEWAY", "asaas")
"""
str: Gateway de pagamento usado quando nenhuma configuração ativa existe no banco.
"""

RESERVE_SWEEP_INTERVAL_SECONDS = int(os.getenv("RESERVE_SWEEP_INTERVAL_SECONDS", 0))
"""
int: Intervalo, em segundos, da varredura de reservas executada em segundo plano.
Zero desativa a tarefa (a varredura passa a depender de um agendador externo).
"""

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
"""
str: Nível de log configurado em main.py.
"""

DEFAULT_FEE_SETTINGS = {
    "pix_fee_percent": os.getenv("DEFAULT_PIX_FEE_PERCENT", "3.0"),
    "bank_slip_fee_percent": os.getenv("DEFAULT_BANK_SLIP_FEE_PERCENT", "3.5"),
    "card_fee_percent": os.getenv("DEFAULT_CARD_FEE_PERCENT", "5.0"),
    "fixed_fee_cents": int(os.getenv("DEFAULT_FIXED_FEE_CENTS", 100)),
    "pix_release_days": int(os.getenv("DEFAULT_PIX_RELEASE_DAYS", 1)),
    "bank_slip_release_days": int(os.getenv("DEFAULT_BANK_SLIP_RELEASE_DAYS", 1)),
    "card_release_days": int(os.getenv("DEFAULT_CARD_RELEASE_DAYS", 30)),
    "security_reserve_percent": os.getenv("DEFAULT_SECURITY_RESERVE_PERCENT", "4.0"),
    "security_reserve_days": int(os.getenv("DEFAULT_SECURITY_RESERVE_DAYS", 30)),
    "withdrawal_fee_cents": int(os.getenv("DEFAULT_WITHDRAWAL_FEE_CENTS", 367)),
}
"""
dict: Valores usados para criar a linha única de platform_settings na inicialização.
Os percentuais são mantidos como texto e convertidos para Decimal pelo serviço de taxas.
"""

DB_SESSION_KEY = web.AppKey[async_sessionmaker]("db_session")
"""
web.AppKey[async_sessionmaker]: Chave para armazenar o criador de sessões na aplicação AIOHTTP.
Cada requisição abre a própria sessão a partir dele.
"""


def TIMEZONE() -> datetime:
    """
    Retorna a data e hora atual no fuso horário de negócio.

    Returns:
        datetime: Data e hora com tzinfo configurado.
    """
    return datetime.now(ZoneInfo(TIMEZONE_NAME))


def as_local(value: datetime) -> datetime:
    """
    Normaliza um datetime lido do banco para o fuso horário de negócio.

    Bancos como o SQLite devolvem valores sem tzinfo; nesse caso o valor é
    interpretado como horário local.

    Args:
        value (datetime): Valor possivelmente sem fuso horário.

    Returns:
        datetime: Valor com tzinfo do fuso de negócio.
    """
    zone = ZoneInfo(TIMEZONE_NAME)
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:8080,http://127.0.0.1:3000,http://127.0.0.1:8080"
    ).split(",")
    if origin.strip()
]
"""
list[str]: Origens liberadas no CORS para os painéis web.
"""
