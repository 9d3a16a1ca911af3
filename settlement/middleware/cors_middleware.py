"""
cors_middleware.py

Este módulo define o middleware CORS para permitir requisições cross-origin dos
painéis do produtor e do administrador.

Functions:
    setup_cors(app) -> None:
        Configura o CORS para a aplicação AIOHTTP.
"""

import aiohttp_cors

from settlement.config.settings import CORS_ORIGINS


def setup_cors(app):
    """
    Configura o CORS para a aplicação AIOHTTP.

    As origens permitidas vêm de CORS_ORIGINS.
    As rotas de webhook ficam de fora, pois são chamadas servidor a servidor.

    Args:
        app (web.Application): A aplicação AIOHTTP onde o CORS será configurado.
    """
    cors = aiohttp_cors.setup(app, defaults={
        origin: aiohttp_cors.ResourceOptions(
            allow_credentials=True,
            expose_headers="*",
            allow_headers="*",
            allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
        )
        for origin in CORS_ORIGINS
    })

    for route in list(app.router.routes()):
        if route.resource is not None and route.resource.canonical.startswith("/webhooks"):
            continue
        cors.add(route)
