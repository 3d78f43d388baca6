"""
HTTP entrypoints for signup, claims and rank activation.
"""

import json
import logging
import asyncio
import time
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, Optional

from aiohttp import web

from mlm_engine.errors import MLMError, ErrorCode, InvalidArgument
from mlm_engine.identity.base import IdentityProvider
from mlm_engine.identity.session_tokens import SessionTokenSigner
from mlm_engine.services.signup_service import SignupOrchestrator, SignupRequest
from mlm_engine.services.global_pool_service import PoolDistributor
from mlm_engine.services.activation_service import ActivationService
import config

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    ErrorCode.INVALID_ARGUMENT: 400,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FAILED_PRECONDITION: 412,
    ErrorCode.RESOURCE_EXHAUSTED: 429,
    ErrorCode.ABORTED: 409,
    ErrorCode.INTERNAL: 500,
}


class RateLimiter:
    """Signup attempts allowed per client address within a sliding window"""

    def __init__(self, max_requests: int = 5, time_window: int = 900, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.time_window = time_window
        self.clock = clock
        self.attempts: Dict[str, Deque[float]] = {}

    def is_allowed(self, client_id: str) -> bool:
        now = self.clock()
        window = self.attempts.setdefault(client_id, deque())
        while window and now - window[0] >= self.time_window:
            window.popleft()

        if len(window) >= self.max_requests:
            return False
        window.append(now)
        return True

    def prune(self) -> int:
        """Forget clients whose last attempt left the window"""
        now = self.clock()
        stale = [
            client_id for client_id, window in self.attempts.items()
            if not window or now - window[-1] >= self.time_window
        ]
        for client_id in stale:
            del self.attempts[client_id]
        return len(stale)

    async def prune_loop(self, interval: int = 300):
        while True:
            await asyncio.sleep(interval)
            removed = self.prune()
            if removed:
                logger.debug(f"Dropped {removed} idle rate limit windows")


class WebHandler:
    """aiohttp application exposing the engine"""

    def __init__(
            self,
            session_factory: Callable,
            identity: IdentityProvider,
            token_signer: SessionTokenSigner,
            rate_limiter: Optional[RateLimiter] = None,
            trusted_proxies: Optional[Iterable[str]] = None
    ):
        self.session_factory = session_factory
        self.identity = identity
        self.token_signer = token_signer
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=config.SIGNUP_RATE_LIMIT_REQUESTS,
            time_window=config.SIGNUP_RATE_LIMIT_WINDOW
        )
        self.trusted_proxies = frozenset(config.TRUSTED_PROXIES if trusted_proxies is None else trusted_proxies)
        self._cleanup_task = None

        self.app = web.Application(middlewares=[self.error_middleware])
        self.setup_routes()
        self.app.on_startup.append(self._start_cleanup)
        self.app.on_cleanup.append(self._stop_cleanup)

    def setup_routes(self):
        """Настройка маршрутов"""
        self.app.router.add_post('/signup', self.handle_signup)
        self.app.router.add_post('/claim', self.handle_claim)
        self.app.router.add_post('/activate', self.handle_activate)
        self.app.router.add_get('/health', self.handle_health)

    async def _start_cleanup(self, app):
        self._cleanup_task = asyncio.create_task(self.rate_limiter.prune_loop())

    async def _stop_cleanup(self, app):
        if self._cleanup_task:
            self._cleanup_task.cancel()

    @web.middleware
    async def error_middleware(self, request, handler):
        """Map engine errors to JSON responses"""
        logger.info(f"Request from {self.get_client_ip(request)}: {request.method} {request.path}")
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except MLMError as e:
            return web.json_response(
                {'success': False, 'error': e.toDict()},
                status=HTTP_STATUS.get(e.code, 500)
            )
        except Exception as e:
            logger.error(f"Error processing request: {e}", exc_info=True)
            return web.json_response(
                {'success': False, 'error': {'code': ErrorCode.INTERNAL.value, 'message': 'Internal Server Error'}},
                status=500
            )

    def get_client_ip(self, request: web.Request) -> str:
        """
        Client address for rate limiting. Forwarding headers count only when
        the direct peer is a configured proxy, otherwise any caller could
        pick its own key.
        """
        remote = request.remote or 'unknown'
        if remote not in self.trusted_proxies:
            return remote

        forwarded = [hop.strip() for hop in request.headers.get('X-Forwarded-For', '').split(',') if hop.strip()]
        # Rightmost hop that is not one of our proxies
        for hop in reversed(forwarded):
            if hop not in self.trusted_proxies:
                return hop
        return request.headers.get('X-Real-IP') or remote

    def authenticate(self, request: web.Request) -> str:
        header = request.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            raise InvalidArgument("Missing bearer session token")
        return self.token_signer.verify(header[len('Bearer '):].strip())

    async def read_json(self, request: web.Request) -> dict:
        if not request.body_exists:
            return {}
        try:
            data = await request.json()
        except ValueError:
            raise InvalidArgument("Request body must be JSON")
        if not isinstance(data, dict):
            raise InvalidArgument("Request body must be a JSON object")
        return data

    async def handle_signup(self, request: web.Request) -> web.Response:
        allowed = self.rate_limiter.is_allowed(self.get_client_ip(request))
        data = await self.read_json(request)

        session = self.session_factory()
        try:
            orchestrator = SignupOrchestrator(session, self.identity)
            result = await orchestrator.signup(SignupRequest.fromDict(data), rateLimitAllowed=allowed)
        finally:
            session.close()

        return web.json_response(result.toDict(), status=201)

    async def handle_claim(self, request: web.Request) -> web.Response:
        memberId = self.authenticate(request)
        data = await self.read_json(request)

        session = self.session_factory()
        try:
            amount = await PoolDistributor(session).claim(memberId, data.get('rank'))
        except ValueError as e:
            raise InvalidArgument(str(e))
        finally:
            session.close()

        return web.json_response({'success': True, 'claimedAmount': str(amount)})

    async def handle_activate(self, request: web.Request) -> web.Response:
        memberId = self.authenticate(request)
        data = await self.read_json(request)
        if not data.get('rank'):
            raise InvalidArgument("Missing required field: rank")

        session = self.session_factory()
        try:
            result = await ActivationService(session).activateRank(
                memberId,
                data['rank'],
                paymentMethod=data.get('paymentMethod', 'wallet'),
                activationId=data.get('activationId')
            )
        finally:
            session.close()

        return web.json_response(result, dumps=_dumps)

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({'status': 'ok', 'timestamp': datetime.now().isoformat()})


def _dumps(data) -> str:
    return json.dumps(data, default=str)
