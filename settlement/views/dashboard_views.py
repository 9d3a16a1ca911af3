# D:\3xDigital\settlement\views\dashboard_views.py
"""
dashboard_views.py

Módulo responsável pelos endpoints dos dashboards financeiros.

Endpoints:
    - GET /dashboard/producer: Métricas do produtor (receita líquida, vendas, reembolsos, saldo)
    - GET /dashboard/admin: Métricas gerais da plataforma

Query params comuns:
    period (str, opcional): day, week, month, year, this_year, last_7_days, last_30_days
        ou 'YYYY-MM-DD to YYYY-MM-DD'
"""

from aiohttp import web

from settlement.config.settings import DB_SESSION_KEY
from settlement.middleware.authorization_middleware import require_role
from settlement.services.errors import SettlementError
from settlement.services.report_service import get_producer_dashboard, get_admin_dashboard
from settlement.views.view_utils import error_response, query_int, target_producer_id

routes = web.RouteTableDef()


@routes.get('/dashboard/producer')
@require_role(['admin', 'producer'])
async def producer_dashboard(request: web.Request) -> web.Response:
    """
    Retorna o dashboard do produtor autenticado (ou de producer_id, para admins).

    Query params:
        period (str, opcional): Filtro de período (padrão: last_30_days)
        product_id (int, opcional): Restringe as métricas a um produto
    """
    try:
        producer_id = target_producer_id(request)
        product_id = query_int(request, 'product_id')
        async with request.app[DB_SESSION_KEY]() as session:
            data = await get_producer_dashboard(
                session, producer_id, request.query.get('period', 'last_30_days'), product_id
            )
    except SettlementError as e:
        return error_response(e)

    return web.json_response(data, status=200)


@routes.get('/dashboard/admin')
@require_role(['admin'])
async def admin_dashboard(request: web.Request) -> web.Response:
    try:
        async with request.app[DB_SESSION_KEY]() as session:
            data = await get_admin_dashboard(session, request.query.get('period', 'month'))
    except SettlementError as e:
        return error_response(e)

    return web.json_response(data, status=200)
