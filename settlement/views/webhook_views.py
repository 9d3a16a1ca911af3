# D:\3xDigital\settlement\views\webhook_views.py
"""
webhook_views.py

Módulo responsável pelos endpoints que recebem os webhooks dos gateways de pagamento.

Endpoints:
    - POST /webhooks/payments: Webhook do gateway ativo da plataforma
    - POST /webhooks/{gateway_name}: Webhook de um gateway específico (asaas, iugu)

Regras de Negócio:
    - O token do webhook é validado antes de qualquer leitura do banco de vendas
    - Aceita JSON e formulário (application/x-www-form-urlencoded)
    - Entregas repetidas do mesmo evento respondem 200 sem alterar nada
    - Falhas retornam status de erro para que o gateway tente novamente
"""

import logging

from aiohttp import web

from settlement.config.settings import DB_SESSION_KEY
from settlement.services.errors import SettlementError
from settlement.services.webhook_service import handle_webhook
from settlement.views.view_utils import error_response

logger = logging.getLogger(__name__)

routes = web.RouteTableDef()


async def _read_payload(request: web.Request):
    content_type = request.content_type or ''
    if content_type == 'application/x-www-form-urlencoded':
        form = await request.post()
        return {key: form.get(key) for key in form.keys()}
    if content_type == 'application/json':
        try:
            data = await request.json()
        except ValueError:
            raise web.HTTPBadRequest(text='{"error": "Invalid JSON body"}', content_type="application/json")
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(text='{"error": "Invalid JSON body"}', content_type="application/json")
        return data
    raise web.HTTPUnsupportedMediaType(
        text='{"error": "Expected application/json or application/x-www-form-urlencoded"}',
        content_type="application/json"
    )


async def _process(request: web.Request, gateway_name=None) -> web.Response:
    payload = await _read_payload(request)
    try:
        async with request.app[DB_SESSION_KEY]() as session:
            summary = await handle_webhook(session, gateway_name, payload, request.headers)
    except SettlementError as e:
        logger.warning(f"[WEBHOOK] Webhook recusado ({e.status}): {e.message}")
        return error_response(e)

    return web.json_response(summary, status=200)


@routes.post('/webhooks/payments')
async def active_gateway_webhook(request: web.Request) -> web.Response:
    return await _process(request)


@routes.post('/webhooks/{gateway_name}')
async def gateway_webhook(request: web.Request) -> web.Response:
    """
    Recebe o webhook de um gateway específico.
    """
    return await _process(request, request.match_info['gateway_name'])
