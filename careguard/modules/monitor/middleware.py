from fastapi import Request
from careguard.core.security import resolve_identity
from careguard.modules.audit.classifier import classify, is_excluded
from careguard.modules.audit.models import ActionKind
from careguard.modules.audit.service import request_event, client_ip, endpoint_of
from careguard.modules.anomaly.rules import Observation
from careguard.modules.monitor.service import SecurityMonitor

async def security_monitor(request: Request, call_next):
    """Identity → audit (detached) → anomaly screening (bounded) → handler."""
    if is_excluded(request.url.path):
        return await call_next(request)
    monitor: SecurityMonitor = request.app.state.monitor

    identity = await resolve_identity(request)
    action = classify(request.method, request.url.path)
    event = request_event(request, identity, action, occurred_at=monitor.clock())
    request.state.action_kind = action
    request.state.audit_event_id = event.id
    monitor.recorder.record(event)

    if identity is not None:
        await monitor.engine.evaluate(Observation.from_event(event))

    response = await call_next(request)

    if action == ActionKind.LOGIN and response.status_code == 401:
        monitor.dispatch_failed_login(
            client_ip(request),
            endpoint=endpoint_of(request),
            user_agent=request.headers.get("user-agent"),
        )
    return response
