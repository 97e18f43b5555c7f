"""
HTTPS server for the primary admission endpoint.

Routes:
- ``POST {proxy_path}``: AdmissionReview in, merged AdmissionReview out
- ``GET /healthz``: liveness, always ``ok``
"""

import logging
import ssl
from pathlib import Path

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from pydantic import ValidationError as PydanticValidationError

from ..constants import CA_FILE_NAME, CERT_FILE_NAME, KEY_FILE_NAME
from ..errors import ConfigurationError
from ..models.admission import AdmissionReview
from ..services.dispatcher import AdmissionDispatcher

logger = logging.getLogger(__name__)


def load_ca_bundle(cert_dir: str) -> bytes:
    """
    Read the PEM trust anchor the API server should use for the proxy.

    ``ca.crt`` is preferred; a self-signed serving certificate in
    ``tls.crt`` is its own CA and is used when no ``ca.crt`` exists.

    Raises:
        ConfigurationError: If neither file can be read
    """
    directory = Path(cert_dir)
    for file_name in (CA_FILE_NAME, CERT_FILE_NAME):
        path = directory / file_name
        if path.is_file():
            return path.read_bytes()
    raise ConfigurationError(
        f"neither {CA_FILE_NAME} nor {CERT_FILE_NAME} found in {cert_dir}",
        field="CERT_DIR",
        user_action="Mount the serving certificate secret into CERT_DIR",
    )


def create_server_ssl_context(cert_dir: str) -> ssl.SSLContext:
    """TLS context serving ``tls.crt``/``tls.key`` from ``cert_dir``."""
    directory = Path(cert_dir)
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(directory / CERT_FILE_NAME, directory / KEY_FILE_NAME)
    return context


class ProxyServer:
    """aiohttp server in front of the admission dispatcher."""

    def __init__(
        self,
        dispatcher: AdmissionDispatcher,
        proxy_path: str,
        port: int = 8443,
        host: str = "0.0.0.0",
        cert_dir: str | None = None,
    ):
        """
        Initialize the proxy server.

        Args:
            dispatcher: Dispatcher producing verdicts
            proxy_path: Path the API server posts reviews to
            port: Port to listen on
            host: Host interface to bind to
            cert_dir: Directory with tls.crt/tls.key; plain HTTP when None
        """
        self.dispatcher = dispatcher
        self.proxy_path = proxy_path
        self.port = port
        self.host = host
        self.cert_dir = cert_dir
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_post(self.proxy_path, self._proxy_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _proxy_handler(self, request: Request) -> Response:
        raw_body = await request.read()
        try:
            review = AdmissionReview.model_validate_json(raw_body)
        except PydanticValidationError as e:
            logger.warning(f"Rejecting malformed AdmissionReview: {e.error_count()} errors")
            return json_response(
                {"error": f"malformed AdmissionReview: {e.error_count()} validation errors"},
                status=400,
            )

        verdict = await self.dispatcher.dispatch(
            review, raw_body, list(request.raw_headers)
        )
        return json_response(verdict.to_admission_review(review.api_version))

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        """Start serving."""
        ssl_context = create_server_ssl_context(self.cert_dir) if self.cert_dir else None
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port, ssl_context=ssl_context)
            await self.site.start()

            scheme = "https" if ssl_context else "http"
            logger.info(
                f"Admission proxy listening on {scheme}://{self.host}:{self.port}{self.proxy_path}"
            )
        except Exception as e:
            logger.error(f"Failed to start admission proxy server: {e}")
            raise

    async def stop(self) -> None:
        """Stop serving."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Admission proxy server stopped")
        except Exception as e:
            logger.error(f"Error stopping admission proxy server: {e}")
