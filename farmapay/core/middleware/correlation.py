import logging
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
	"""Injeta `record.correlation_id` para o formato de log do main"""

	def filter(self, record):
		record.correlation_id = correlation_id_var.get()
		return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
	"""Propaga `x-correlation-id` (gera `fp-<uuid>` quando o cliente não envia)"""

	async def dispatch(self, request, call_next):
		cid = request.headers.get('x-correlation-id') or f"fp-{uuid.uuid4()}"
		request.state.correlation_id = cid
		token = correlation_id_var.set(cid)
		try:
			response = await call_next(request)
		finally:
			correlation_id_var.reset(token)
		response.headers['x-correlation-id'] = cid
		return response
