import time

import aiohttp

from catalogfeed.main.logging import get_logger

logger = get_logger(__name__)


class AioHttpClient:
    session: aiohttp.ClientSession = None

    def _create_trace_config(self) -> aiohttp.TraceConfig:
        """Time each request against the catalog endpoint."""
        trace = aiohttp.TraceConfig()

        async def on_request_start(session, trace_config_ctx, params):
            trace_config_ctx._request_start_time = time.perf_counter()

        async def on_request_end(session, trace_config_ctx, params):
            if hasattr(trace_config_ctx, "_request_start_time"):
                duration_ms = (time.perf_counter() - trace_config_ctx._request_start_time) * 1000
                logger.debug(
                    f"{params.method} {params.url.path} -> {params.response.status}",
                    extra={
                        "event": "catalog_api_request",
                        "status_code": params.response.status,
                        "duration_ms": int(duration_ms),
                    },
                )

        trace.on_request_start.append(on_request_start)
        trace.on_request_end.append(on_request_end)

        return trace

    def start(self):
        # Per-request timeouts override these
        timeout = aiohttp.ClientTimeout(
            total=30.0,
            connect=10.0,
        )

        connector = aiohttp.TCPConnector(
            limit=20,
            limit_per_host=10,
            enable_cleanup_closed=True,
            use_dns_cache=True,
            ttl_dns_cache=300,
        )

        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            trace_configs=[self._create_trace_config()],
        )

    async def stop(self):
        if self.session is None:
            return
        await self.session.close()
        self.session = None

    def __call__(self) -> aiohttp.ClientSession:
        assert self.session is not None
        return self.session


aiohttp_client = AioHttpClient()
