from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from dietapp.common import ServiceSettings
from dietapp.notification_service.app.main import SERVICE_NAME, create_app


@pytest.mark.asyncio
async def test_health_endpoint_returns_ok() -> None:
    app = create_app()

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert app.title == SERVICE_NAME


@pytest.mark.asyncio
async def test_metrics_endpoint_exposed_when_enabled() -> None:
    app = create_app(ServiceSettings(app_name="Metrics Test", enable_metrics=True, enable_tracing=False))

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            await client.get("/health")
            response = await client.get("/metrics")

    assert response.status_code == 200
    assert "notification_deliveries_total" in response.text


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
