# D:\3xDigital\main.py

"""
main.py

Este módulo inicializa e executa a aplicação AIOHTTP do núcleo de liquidação. Ele
configura o logging e o banco de dados, semeia as configurações de taxas da
plataforma, registra as rotas e, opcionalmente, agenda a varredura periódica de
reservas.

Functions:
    init_app(db_url: str) -> web.Application:
        Inicializa a aplicação, configurando o banco de dados e as rotas.

    main() -> None:
        Executa a aplicação e inicia o servidor.
"""

import asyncio
import logging

from aiohttp import web

from settlement.config.settings import (
    DATABASE_URL, DB_SESSION_KEY, LOG_LEVEL, RESERVE_SWEEP_INTERVAL_SECONDS
)
from settlement.middleware.cors_middleware import setup_cors
from settlement.models.database import create_database, get_session_maker, get_async_engine
from settlement.services.fee_settings_service import ensure_platform_settings
from settlement.services.reserve_release_service import run_sweep
from settlement.views.dashboard_views import routes as dashboard_routes
from settlement.views.finance_views import routes as finance_routes
from settlement.views.settings_views import routes as settings_routes
from settlement.views.webhook_views import routes as webhook_routes

logger = logging.getLogger(__name__)


async def _sweep_loop(app: web.Application):
    while True:
        await asyncio.sleep(RESERVE_SWEEP_INTERVAL_SECONDS)
        try:
            async with app[DB_SESSION_KEY]() as session:
                summary = await run_sweep(session)
            logger.info(
                f"[RESERVE_RELEASE] Varredura concluída: "
                f"{len(summary['reserves']['releases'])} reservas e "
                f"{len(summary['shares']['releases'])} partes liberadas"
            )
        except Exception as e:
            # A próxima execução tenta novamente
            logger.exception(f"[RESERVE_RELEASE] Falha na varredura periódica: {e}")


async def reserve_sweeper(app: web.Application):
    """
    Contexto de ciclo de vida que mantém a varredura periódica rodando em segundo plano.
    """
    task = asyncio.create_task(_sweep_loop(app))
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def init_app(db_url: str = DATABASE_URL) -> web.Application:
    """
    Inicializa a aplicação, criando as tabelas do banco de dados e configurando rotas.

    Args:
        db_url (str): URL do banco de dados. O padrão é DATABASE_URL.

    Returns:
        web.Application: Instância configurada da aplicação AIOHTTP.
    """
    # Cria as tabelas do banco de dados
    await create_database(db_url)

    # Configuração do banco de dados
    engine = get_async_engine(db_url)
    session_maker = get_session_maker(engine)

    # Semeia a linha de configurações da plataforma
    async with session_maker() as session:
        await ensure_platform_settings(session)

    # Configuração da aplicação AIOHTTP
    app = web.Application()
    app[DB_SESSION_KEY] = session_maker

    app.add_routes(finance_routes)
    app.add_routes(settings_routes)
    app.add_routes(dashboard_routes)
    app.add_routes(webhook_routes)

    # Configuração do CORS
    setup_cors(app)

    if RESERVE_SWEEP_INTERVAL_SECONDS > 0:
        app.cleanup_ctx.append(reserve_sweeper)

    async def dispose_engine(app):
        await engine.dispose()

    app.on_cleanup.append(dispose_engine)

    logger.info(f"Aplicação inicializada com o banco {db_url}")
    return app


def main():
    """
    Executa a aplicação na porta 8000.
    """
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    web.run_app(init_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
