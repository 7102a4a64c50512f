"""
FastAPI server and push streams for KubeView.

This module provides the web server for KubeView: REST endpoints for namespace
discovery, namespace snapshots, pod logs and cluster details, and the push
streams (server-sent events and WebSocket) that carry live resource changes
from the Broker to connected viewers.

Key Components:
- create_app: Application factory wiring a Broker, KubeContext and WatchPipeline into FastAPI routes
- SSE stream: GET /updates/{namespace}, one frame per change event
- WebSocket stream: /ws/{namespace}, one JSON message per change event
- run_server: Main server startup, background tasks and shutdown

Push frames carry the event kind as their type ("add", "update", "delete",
"ping") and the redacted resource as payload. A viewer that asks for a
snapshot on the SSE stream is registered with the Broker before the snapshot
is read, so no change can fall between the snapshot and the live stream.

Example:
    ```python
    config = ServerConfig(host="0.0.0.0", port=8000, namespace="production")
    await run_server(config)
    ```
"""

import asyncio
import json
import os
import logging
from typing import Dict, Any, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Query
from fastapi.responses import StreamingResponse, JSONResponse
from kubernetes.client import ApiException

from . import __version__
from .broker import Broker
from .connection import ClientConnection
from .constants import ALL_NAMESPACES, DEFAULT_LOG_LINES, DEFAULT_LOG_LEVEL
from .exceptions import InvalidRequestError, PodNotFoundError, NamespaceNotFoundError, KubernetesConnectionError
from .kube import KubeContext, load_kube, list_namespaces, namespace_exists, fetch_namespace, fetch_pod_logs
from .models import ServerConfig, namespaced_resource_types
from .redaction import build_policy
from .watch import WatchPipeline

# Logging setup (level via KUBEVIEW_LOG_LEVEL env or default INFO)
logging.basicConfig(
    level=getattr(logging, os.getenv('KUBEVIEW_LOG_LEVEL', DEFAULT_LOG_LEVEL).upper(), logging.INFO),
    format='[%(asctime)s] %(levelname)s %(message)s'
)
log = logging.getLogger('kubeview')

SSE_HEADERS = {
    'Cache-Control': 'no-cache',
    'Connection': 'keep-alive',
    'X-Accel-Buffering': 'no',
}


# Helper for safe exception logging
def _log_exception(msg: str, exc: Exception, level: int = logging.WARNING):
    """Log an exception with proper formatting."""
    log.log(level, f"{msg}: {exc.__class__.__name__}: {exc}")


def create_app(broker: Broker, kube: KubeContext, config: Optional[ServerConfig] = None,
               pipeline: Optional[WatchPipeline] = None) -> FastAPI:
    """
    Create the KubeView FastAPI application.

    Args:
        broker: Broker delivering change events to push streams
        kube: Kubernetes context used for snapshots, namespaces and logs
        config: Server configuration (defaults if omitted)
        pipeline: Running watch pipeline, used for namespace tracking and health

    Returns:
        FastAPI: Configured application, ready to be served by uvicorn

    Example:
        ```python
        app = create_app(broker, kube, config, pipeline)
        ```
    """
    config = config or ServerConfig()
    resource_types = namespaced_resource_types(config.use_endpoint_slices)
    policy = build_policy(config.redact_configmaps)

    app = FastAPI(title="KubeView", version=__version__)
    app.state.broker = broker
    app.state.kube = kube
    app.state.config = config
    app.state.pipeline = pipeline

    def _allowed(namespace: str) -> bool:
        return not kube.namespace or namespace == kube.namespace

    async def _require_namespace(namespace: str) -> None:
        if not _allowed(namespace):
            raise NamespaceNotFoundError(f"Namespace {namespace} not found")
        try:
            exists = await namespace_exists(kube, namespace)
        except ApiException as e:
            _log_exception("[api] Namespace lookup failed", e)
            raise HTTPException(status_code=502, detail=f"Kubernetes API error: {e.status} {e.reason}")
        if not exists:
            raise NamespaceNotFoundError(f"Namespace {namespace} not found")

    @app.exception_handler(NamespaceNotFoundError)
    async def namespace_not_found(request, exc: NamespaceNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.get('/api/health')
    async def health():
        return {
            'status': 'ok',
            'heartbeatInterval': broker.heartbeat_interval,
            'broker': broker.stats(),
            'watchers': pipeline.status() if pipeline else {},
        }

    @app.get('/api/config')
    async def cluster_config():
        info = kube.info()
        info.update({
            'version': __version__,
            'heartbeatInterval': broker.heartbeat_interval,
            'nameFilter': config.name_filter.pattern if config.name_filter else None,
            'useEndpointSlices': config.use_endpoint_slices,
        })
        return info

    @app.get('/api/namespaces')
    async def namespaces():
        if pipeline is not None and not kube.namespace:
            known = pipeline.known_namespaces()
            if known:
                return {'namespaces': known}
        try:
            names = await list_namespaces(kube)
        except ApiException as e:
            _log_exception("[api] Failed to list namespaces", e)
            raise HTTPException(status_code=502, detail=f"Kubernetes API error: {e.status} {e.reason}")
        return {'namespaces': names}

    @app.get('/api/namespaces/{namespace}')
    async def namespace_snapshot(namespace: str) -> Dict[str, Any]:
        await _require_namespace(namespace)
        try:
            return await fetch_namespace(kube, namespace, resource_types, policy, config.name_filter)
        except ApiException as e:
            _log_exception(f"[api] Failed to fetch namespace {namespace}", e)
            raise HTTPException(status_code=502, detail=f"Kubernetes API error: {e.status} {e.reason}")

    @app.get('/api/logs/{namespace}/{pod}')
    async def pod_logs(namespace: str, pod: str, lines: int = DEFAULT_LOG_LINES, container: Optional[str] = None):
        if not _allowed(namespace):
            raise HTTPException(status_code=404, detail=f"Namespace {namespace} not found")
        try:
            text = await fetch_pod_logs(kube, namespace, pod, lines=lines, container=container)
        except InvalidRequestError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PodNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ApiException as e:
            _log_exception(f"[api] Failed to read logs for {namespace}/{pod}", e)
            if e.status == 400:
                raise HTTPException(status_code=400, detail=f"{e.reason}")
            raise HTTPException(status_code=502, detail=f"Kubernetes API error: {e.status} {e.reason}")
        return {'logs': text}

    @app.get('/updates/{namespace}')
    async def updates(namespace: str, client_id: Optional[str] = Query(None, alias='clientID'),
                      snapshot: bool = False):
        if namespace != ALL_NAMESPACES and not _allowed(namespace):
            raise HTTPException(status_code=404, detail=f"Namespace {namespace} not found")
        if namespace == ALL_NAMESPACES and kube.namespace:
            namespace = kube.namespace

        async def stream():
            async with ClientConnection(broker, namespace, client_id) as conn:
                log.info(f"[sse] client connected namespace={namespace} client={client_id}")
                yield ": connected\n\n"
                if snapshot and namespace != ALL_NAMESPACES:
                    try:
                        data = await fetch_namespace(kube, namespace, resource_types, policy, config.name_filter)
                        yield f"event: snapshot\ndata: {json.dumps(data, separators=(',', ':'), default=str)}\n\n"
                    except Exception as e:
                        _log_exception(f"[sse] Snapshot of {namespace} failed", e)
                async for event in conn.events():
                    yield event.to_sse()
            log.info(f"[sse] client disconnected namespace={namespace} client={client_id}")

        return StreamingResponse(stream(), media_type='text/event-stream', headers=SSE_HEADERS)

    @app.websocket('/ws/{namespace}')
    async def websocket_endpoint(ws: WebSocket, namespace: str, client_id: Optional[str] = Query(None, alias='clientID')):
        """Push change events for a namespace as JSON messages ({"type", "data"})."""
        if namespace != ALL_NAMESPACES and not _allowed(namespace):
            # rejected during the handshake
            await ws.close(code=1008)
            return
        if namespace == ALL_NAMESPACES and kube.namespace:
            namespace = kube.namespace
        async with ClientConnection(broker, namespace, client_id) as conn:
            await ws.accept()
            log.info(f"[ws] client connected namespace={namespace} client={client_id}")
            sender = asyncio.create_task(_send_events(ws, conn))
            receiver = asyncio.create_task(_wait_disconnect(ws))
            try:
                done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (sender, receiver):
                    task.cancel()
                await asyncio.gather(sender, receiver, return_exceptions=True)
        if receiver in done:
            log.info(f"[ws] client disconnected namespace={namespace} client={client_id}")
        else:
            try:
                await ws.close()
            except Exception as e:
                _log_exception("[ws] Error closing socket", e, logging.DEBUG)

    return app


async def _send_events(ws: WebSocket, conn: ClientConnection) -> None:
    try:
        async for event in conn.events():
            await ws.send_text(json.dumps(event.to_message(), separators=(',', ':'), default=str))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        _log_exception("[ws] Failed to send to client", e)


async def _wait_disconnect(ws: WebSocket) -> None:
    # viewers do not send anything meaningful; only watch for the close
    while True:
        message = await ws.receive()
        if message.get('type') == 'websocket.disconnect':
            return


async def run_server(config: ServerConfig) -> None:
    """Run the KubeView server with proper error handling."""
    log.setLevel(getattr(logging, config.log_level, logging.INFO))
    try:
        kube = await load_kube(config.kubeconfig, config.context, config.namespace)
    except Exception as e:
        _log_exception("[server] Failed to load Kubernetes configuration", e)
        raise KubernetesConnectionError(f"Failed to connect to Kubernetes: {e}")

    if config.namespace:
        log.info(f"[server] single namespace mode, namespace={config.namespace}")

    broker = Broker(queue_size=config.queue_size, heartbeat_interval=config.heartbeat_interval)
    pipeline = WatchPipeline.from_config(kube, broker, config)
    await pipeline.start()
    broker.start_heartbeat()

    app = create_app(broker, kube, config, pipeline)

    import uvicorn
    loop = asyncio.get_running_loop()

    class _Server(uvicorn.Server):
        def handle_exit(self, sig, frame):
            # end open push streams so graceful shutdown does not wait on them
            loop.call_soon_threadsafe(broker.close)
            super().handle_exit(sig, frame)

    uvicorn_config = uvicorn.Config(app, host=config.host, port=config.port, log_level=config.uvicorn_log_level)
    server = _Server(uvicorn_config)
    try:
        await server.serve()
    finally:
        broker.close()
        await broker.stop_heartbeat()
        await pipeline.stop()
