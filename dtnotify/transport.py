"""HTTP client construction: timeout, TLS trust policy, proxy routing."""

from __future__ import annotations

import fnmatch
import logging
import ssl
import urllib.request
from urllib.parse import urlsplit

import httpx

from .config import ProxyConfig
from .models import ClientCertificate

logger = logging.getLogger(__name__)

SOCKET_TIMEOUT = 60.0


def build_ssl_context(certificate: ClientCertificate | None = None) -> ssl.SSLContext:
    """TLS context that trusts any server chain, optionally presenting a client cert."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    if certificate is not None:
        context.load_cert_chain(
            certificate.cert_file,
            keyfile=certificate.key_file,
            password=certificate.password,
        )
    return context


def _bypassed(host: str, patterns: tuple[str, ...]) -> bool:
    host = host.lower()
    for pattern in patterns:
        pattern = pattern.strip().lower()
        if not pattern:
            continue
        if fnmatch.fnmatch(host, pattern):
            return True
        # ".example.com" / "example.com" also cover subdomains
        suffix = pattern.lstrip("*").lstrip(".")
        if host == suffix or host.endswith("." + suffix):
            return True
    return False


def resolve_proxy(url: str, proxy_config: ProxyConfig | None = None) -> httpx.Proxy | None:
    """Proxy to route ``url`` through, honouring no-proxy hosts; None for direct."""
    parts = urlsplit(url)
    host = parts.hostname or ""

    if proxy_config is not None and proxy_config.url:
        if _bypassed(host, proxy_config.no_proxy):
            return None
        proxy_url = proxy_config.url
    else:
        env_proxies = urllib.request.getproxies_environment()
        proxy_url = env_proxies.get(parts.scheme) or env_proxies.get("all")
        if not proxy_url or urllib.request.proxy_bypass_environment(host):
            return None

    if urlsplit(proxy_url).scheme not in ("http", "https"):
        logger.debug("Ignoring non-HTTP proxy %s", proxy_url)
        return None

    if proxy_config is not None and proxy_config.username:
        return httpx.Proxy(proxy_url, auth=(proxy_config.username, proxy_config.password or ""))
    return httpx.Proxy(proxy_url)


def create_client(
    url: str,
    ignore_unverified_ssl: bool = False,
    certificate: ClientCertificate | None = None,
    proxy_config: ProxyConfig | None = None,
) -> httpx.Client:
    """Client for a single notification attempt; the caller closes it."""
    verify: ssl.SSLContext | bool = True
    if urlsplit(url).scheme == "https" and ignore_unverified_ssl:
        try:
            verify = build_ssl_context(certificate)
        except (ssl.SSLError, OSError, ValueError):
            logger.warning("Couldn't initialize SSL context, using default trust settings", exc_info=True)
            verify = True

    proxy = resolve_proxy(url, proxy_config)
    if proxy is not None:
        logger.debug("Routing %s through proxy %s", url, proxy.url)

    return httpx.Client(
        timeout=SOCKET_TIMEOUT,
        verify=verify,
        proxy=proxy,
        trust_env=False,
    )
