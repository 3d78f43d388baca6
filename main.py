import logging

from aiohttp import web

from init import Session, init_tables, _engine
from api.web_handler import WebHandler
from mlm_engine.identity.identity_toolkit import IdentityToolkitProvider
from mlm_engine.identity.session_tokens import SessionTokenSigner
import config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app() -> web.Application:
    token_signer = SessionTokenSigner(config.SESSION_TOKEN_SECRET, config.SESSION_TOKEN_TTL)
    identity = IdentityToolkitProvider(tokenSigner=token_signer)
    handler = WebHandler(Session, identity, token_signer)
    return handler.app


def main():
    init_tables(_engine)
    logger.info(f"Starting binary MLM engine on {config.WEB_HOST}:{config.WEB_PORT}")
    web.run_app(create_app(), host=config.WEB_HOST, port=config.WEB_PORT)


if __name__ == '__main__':
    main()
