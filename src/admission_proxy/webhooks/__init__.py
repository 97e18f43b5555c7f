"""
Primary admission endpoint of the proxy.

The API server calls a single statically registered webhook; this package
serves it over HTTPS with certificates provisioned outside the operator and
hands every review to the admission dispatcher.
"""

from .server import ProxyServer, create_server_ssl_context, load_ca_bundle

__all__ = ["ProxyServer", "create_server_ssl_context", "load_ca_bundle"]
