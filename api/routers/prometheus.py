"""Prometheus-compatible metrics endpoint."""

import time

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

router = APIRouter()


@router.get("/metrics")
async def prometheus_metrics(request: Request):
    """Expose metrics in Prometheus text exposition format."""
    service = request.app.state.service
    stats = service.orchestrator.stats
    uptime = time.time() - service.started_at

    lines = [
        "# HELP auralink_uptime_seconds Seconds since service start",
        "# TYPE auralink_uptime_seconds gauge",
        f"auralink_uptime_seconds {uptime:.1f}",
        "",
        "# HELP auralink_mqtt_connected Broker session state (1=connected)",
        "# TYPE auralink_mqtt_connected gauge",
        f"auralink_mqtt_connected {int(service.connection.connected)}",
        "",
        "# HELP auralink_readings_stored Readings currently held in the bounded log",
        "# TYPE auralink_readings_stored gauge",
        f"auralink_readings_stored {len(service.store)}",
        "",
        "# HELP auralink_readings_received_total Sensor payloads accepted",
        "# TYPE auralink_readings_received_total counter",
        f"auralink_readings_received_total {service.handler.readings_received}",
        "",
        "# HELP auralink_readings_rejected_total Sensor payloads that could not be parsed",
        "# TYPE auralink_readings_rejected_total counter",
        f"auralink_readings_rejected_total {service.handler.readings_rejected}",
        "",
        "# HELP auralink_pipeline_runs_total Enrichment pipeline runs",
        "# TYPE auralink_pipeline_runs_total counter",
        f"auralink_pipeline_runs_total {stats.runs}",
        "",
        "# HELP auralink_pipeline_coalesced_total Triggers folded into a pending run",
        "# TYPE auralink_pipeline_coalesced_total counter",
        f"auralink_pipeline_coalesced_total {stats.coalesced_triggers}",
        "",
        "# HELP auralink_display_publish_failures_total Display publishes that failed",
        "# TYPE auralink_display_publish_failures_total counter",
        f"auralink_display_publish_failures_total {stats.publish_failures}",
        "",
        "# HELP auralink_pipeline_fallbacks_total Fallback values published, by reason",
        "# TYPE auralink_pipeline_fallbacks_total counter",
    ]
    for reason, count in sorted(stats.fallbacks.items(), key=lambda kv: kv[0].value):
        lines.append(f'auralink_pipeline_fallbacks_total{{reason="{reason.value}"}} {count}')
    return PlainTextResponse("\n".join(lines) + "\n", media_type="text/plain; version=0.0.4")
