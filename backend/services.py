"""
Student Dashboard - External Service Clients
Thin async proxies to the email poller, Canvas agent, AI calendar scheduler and
vector-store microservices. The services themselves are opaque collaborators.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from config import ServicesConfig, get_services_config

logger = logging.getLogger(__name__)

# Per-call timeouts in seconds
EMAIL_TIMEOUT = 10.0
CANVAS_TIMEOUT = 10.0
CALENDAR_SCHEDULE_TIMEOUT = 10.0
CALENDAR_STATUS_TIMEOUT = 5.0
VECTOR_DB_TIMEOUT = 15.0


class ServiceError(Exception):
    """A downstream service call failed; carries the status to relay to the caller."""

    def __init__(self, message: str, status: int, service: str, data: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.service = service
        self.data = data


def _handle_response(response: httpx.Response, service: str) -> Any:
    if not response.is_success:
        try:
            data = response.json()
        except ValueError:
            data = None
        message = None
        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
        raise ServiceError(
            message or response.reason_phrase or "API request failed",
            response.status_code,
            service,
            data
        )
    try:
        return response.json()
    except ValueError:
        raise ServiceError("Service returned invalid JSON", 502, service)


class ServiceClient:
    """
    Async JSON client for one external service.

    Usage:
        client = ServiceClient("http://localhost:5001", "email")
        data = await client.post("/api/start-email-polling", {...}, timeout=10)
    """

    def __init__(
        self,
        base_url: str,
        service: str,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.service = service
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        timeout: float,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        if not self.base_url:
            raise ServiceError(f"{self.service} service is not configured", 503, self.service)

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=timeout, transport=self._transport
            ) as client:
                response = await client.request(method, path, json=json, params=params)
        except httpx.TimeoutException:
            logger.warning(f"{self.service} request to {path} timed out after {timeout}s")
            raise ServiceError("Request timeout", 408, self.service)
        except httpx.HTTPError as e:
            logger.error(f"{self.service} service unreachable: {e}")
            raise ServiceError(f"{self.service} service unavailable", 502, self.service)

        return _handle_response(response, self.service)

    async def post(self, path: str, payload: Dict[str, Any], timeout: float) -> Any:
        return await self.request("POST", path, timeout, json=payload)

    async def get(self, path: str, params: Dict[str, Any], timeout: float) -> Any:
        return await self.request("GET", path, timeout, params=params)


class DashboardServices:
    """The four microservices the dashboard proxies to."""

    def __init__(
        self,
        config: Optional[ServicesConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        config = config or get_services_config()
        self.email = ServiceClient(config.email_service_url, "email", transport)
        self.canvas = ServiceClient(config.canvas_service_url, "canvas", transport)
        self.calendar = ServiceClient(config.calendar_service_url, "calendar", transport)
        self.vector_db = ServiceClient(config.vector_db_service_url, "vectorDb", transport)

    async def start_email_polling(self, access_token: str, user_id: str) -> Any:
        return await self.email.post(
            "/api/start-email-polling",
            {"user_id": user_id, "access_token": access_token},
            EMAIL_TIMEOUT
        )

    async def run_canvas_agent(self, access_token: str, user_id: str) -> Any:
        return await self.canvas.post(
            "/api/canvas_agent",
            {"user_id": user_id, "access_token": access_token},
            CANVAS_TIMEOUT
        )

    async def fetch_canvas_assignments(self, access_token: str, user_id: str) -> Any:
        return await self.canvas.post(
            "/api/start-fetch-assignments",
            {"user_id": user_id, "access_token": access_token},
            CANVAS_TIMEOUT
        )

    async def schedule_calendar(self, user_id: str) -> Any:
        return await self.calendar.post("/schedule", {"user_id": user_id}, CALENDAR_SCHEDULE_TIMEOUT)

    async def get_schedule_status(self, user_id: str) -> Any:
        return await self.calendar.get("/schedule/status", {"user_id": user_id}, CALENDAR_STATUS_TIMEOUT)

    async def create_vector_store(self, user_id: str, access_token: str, provider: str) -> Any:
        return await self.vector_db.post(
            "/api/create_vector_store",
            {"user_id": user_id, "access_token": access_token, "provider": provider},
            VECTOR_DB_TIMEOUT
        )
