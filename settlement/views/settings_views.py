# D:\3xDigital\settlement\views\settings_views.py
"""
settings_views.py

Módulo responsável pelos endpoints de configuração de taxas da plataforma e das
sobrescritas por produtor.

Endpoints:
    - GET /finance/settings/platform: Consulta os padrões da plataforma
    - PUT /finance/settings/platform: Atualiza os padrões da plataforma
    - GET /finance/settings/producers/{producer_id}: Consulta sobrescritas e valores efetivos
    - PUT /finance/settings/producers/{producer_id}: Atualiza sobrescritas (null remove)

Regras de Negócio:
    - Apenas administradores alteram configurações
    - Produtores podem consultar as próprias configurações efetivas
"""

from aiohttp import web

from settlement.config.settings import DB_SESSION_KEY
from settlement.middleware.authorization_middleware import require_role
from settlement.services.errors import SettlementError
from settlement.services.fee_settings_service import (
    get_platform_settings,
    update_platform_settings,
    get_producer_settings,
    update_producer_settings,
    resolve_fee_settings,
    settings_to_dict,
    SETTINGS_FIELDS
)
from settlement.views.view_utils import error_response

routes = web.RouteTableDef()


async def _read_body(request: web.Request):
    try:
        data = await request.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


@routes.get('/finance/settings/platform')
@require_role(['admin'])
async def get_platform_fee_settings(request: web.Request) -> web.Response:
    try:
        async with request.app[DB_SESSION_KEY]() as session:
            platform = await get_platform_settings(session)
    except SettlementError as e:
        return error_response(e)

    return web.json_response({"settings": settings_to_dict(platform)}, status=200)


@routes.put('/finance/settings/platform')
@require_role(['admin'])
async def update_platform_fee_settings(request: web.Request) -> web.Response:
    """
    Atualiza os padrões da plataforma. Apenas os campos enviados são alterados.
    """
    data = await _read_body(request)
    if data is None:
        return web.json_response({"error": "Invalid JSON body"}, status=400)

    try:
        async with request.app[DB_SESSION_KEY]() as session:
            platform = await update_platform_settings(session, data)
    except SettlementError as e:
        return error_response(e)

    return web.json_response({
        "message": "Platform settings updated",
        "settings": settings_to_dict(platform)
    }, status=200)


@routes.get('/finance/settings/producers/{producer_id}')
@require_role(['admin', 'producer'])
async def get_producer_fee_settings(request: web.Request) -> web.Response:
    """
    Retorna as sobrescritas do produtor e as configurações efetivas resultantes.
    """
    try:
        producer_id = int(request.match_info['producer_id'])
    except ValueError:
        return web.json_response({"error": "Invalid producer id"}, status=400)

    user = request["user"]
    if user["role"] != 'admin' and user["id"] != producer_id:
        return web.json_response({"error": "Acesso negado: privilégio insuficiente."}, status=403)

    try:
        async with request.app[DB_SESSION_KEY]() as session:
            overrides = await get_producer_settings(session, producer_id)
            effective = await resolve_fee_settings(session, producer_id)
    except SettlementError as e:
        return error_response(e)

    return web.json_response({
        "producer_id": producer_id,
        "overrides": settings_to_dict(overrides) if overrides else {name: None for name in SETTINGS_FIELDS},
        "effective": effective.to_dict()
    }, status=200)


@routes.put('/finance/settings/producers/{producer_id}')
@require_role(['admin'])
async def update_producer_fee_settings(request: web.Request) -> web.Response:
    try:
        producer_id = int(request.match_info['producer_id'])
    except ValueError:
        return web.json_response({"error": "Invalid producer id"}, status=400)

    data = await _read_body(request)
    if data is None:
        return web.json_response({"error": "Invalid JSON body"}, status=400)

    try:
        async with request.app[DB_SESSION_KEY]() as session:
            overrides = await update_producer_settings(session, producer_id, data)
            effective = await resolve_fee_settings(session, producer_id)
    except SettlementError as e:
        return error_response(e)

    return web.json_response({
        "message": "Producer settings updated",
        "producer_id": producer_id,
        "overrides": settings_to_dict(overrides),
        "effective": effective.to_dict()
    }, status=200)
