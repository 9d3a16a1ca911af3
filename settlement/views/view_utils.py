# D:\3xDigital\settlement\views\view_utils.py
"""
view_utils.py

Funções auxiliares compartilhadas pelas views: conversão de erros do núcleo em
respostas JSON, leitura de parâmetros numéricos e resolução do produtor alvo.
"""

from typing import Optional

from aiohttp import web

from settlement.services.errors import SettlementError, InvalidRequestError


def error_response(error: SettlementError) -> web.Response:
    """
    Converte um erro do núcleo na resposta JSON com o status correspondente.
    """
    return web.json_response(error.to_dict(), status=error.status)


def query_int(request: web.Request, name: str, default: Optional[int] = None, minimum: int = 1) -> Optional[int]:
    """
    Lê um parâmetro inteiro da query string.

    Raises:
        InvalidRequestError: Se o valor não for um inteiro ou for menor que o mínimo.
    """
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidRequestError(f"Invalid value for {name}")
    if value < minimum:
        raise InvalidRequestError(f"{name} must be at least {minimum}")
    return value


def target_producer_id(request: web.Request, required: bool = True) -> Optional[int]:
    """
    Produtores sempre consultam os próprios dados; administradores informam producer_id.
    """
    user = request["user"]
    if user["role"] != 'admin':
        return user["id"]

    producer_id = query_int(request, 'producer_id')
    if producer_id is None and required:
        raise InvalidRequestError("producer_id is required for administrators")
    return producer_id


def page_meta(page: int, page_size: int, total_count: int) -> dict:
    return {
        "page": page,
        "page_size": page_size,
        "total_count": total_count,
        "total_pages": (total_count + page_size - 1) // page_size
    }
