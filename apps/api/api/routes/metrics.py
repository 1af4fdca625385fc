from fastapi import APIRouter
from fastapi.responses import Response

from apps.api.metrics import PrometheusExporter, metrics_registry

router = APIRouter(tags=["observability"])


@router.get("/metrics", summary="Prometheus metrics")
async def metrics() -> Response:
    exporter = PrometheusExporter(metrics_registry)
    return Response(content=exporter.build_payload(), media_type=exporter.content_type)
