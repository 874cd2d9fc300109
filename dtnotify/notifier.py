"""Notify the monitoring server of build lifecycle events."""

from __future__ import annotations

import logging
import ssl
from pathlib import Path

import httpx

from .config import EffectiveConfig, NotifierSettings
from .credentials import CredentialStore, SecretResolver
from .keys import build_key
from .macros import EnvironmentMacroExpander, MacroExpander, try_expand
from .models import BuildSnapshot, NotificationResult, NotificationState
from .payload import build_payload, serialize_payload
from .state import map_state
from .transport import create_client

logger = logging.getLogger(__name__)

EVENTS_PATH = "/api/v1/events"

TLS_HINT = (
    "TLS certificate verification failed while notifying the server. Make sure "
    "the certificate of the server is valid or enable 'ignore_unverified_ssl' "
    "in the notifier configuration of this job."
)


def _is_tls_verification_error(exc: BaseException) -> bool:
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ssl.SSLCertVerificationError):
            return True
        if "CERTIFICATE_VERIFY_FAILED" in str(current):
            return True
        current = current.__cause__ or current.__context__
    return False


class Notifier:
    """Send one event per lifecycle hook. Hooks never fail the build."""

    def __init__(
        self,
        settings: NotifierSettings,
        credentials: SecretResolver | None = None,
        expander: MacroExpander | None = None,
    ):
        self.settings = settings
        self.credentials = credentials or CredentialStore()
        self.expander = expander or EnvironmentMacroExpander()

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def before_build(self, build: BuildSnapshot, workspace: Path | None = None) -> bool:
        config = self.settings.resolve()
        if config.disable_inprogress_notification:
            return True
        root_url = self._root_url(build, config)
        if root_url is None:
            logger.error("Cannot notify server! (CI root URL not configured)")
            return True
        return self._process_event(build, workspace, config, NotificationState.INPROGRESS, root_url)

    def after_build(self, build: BuildSnapshot, workspace: Path | None = None) -> bool:
        """Freestyle post-build hook."""
        config = self.settings.resolve()
        return self._perform(build, workspace, config, config.disable_inprogress_notification)

    def perform(self, build: BuildSnapshot, workspace: Path | None = None) -> bool:
        """Pipeline step. A False return means the caller should fail the build."""
        config = self.settings.resolve()
        return self._perform(build, workspace, config, False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _root_url(self, build: BuildSnapshot, config: EffectiveConfig) -> str | None:
        return build.root_url or config.root_url or None

    def _perform(
        self,
        build: BuildSnapshot,
        workspace: Path | None,
        config: EffectiveConfig,
        disable_in_progress: bool,
    ) -> bool:
        root_url = self._root_url(build, config)
        if root_url is None:
            logger.error("Cannot notify server! (CI root URL not configured)")
            return True
        state = map_state(build.result, config, disable_in_progress)
        if state is None:
            return True
        return self._process_event(build, workspace, config, state, root_url)

    def _process_event(
        self,
        build: BuildSnapshot,
        workspace: Path | None,
        config: EffectiveConfig,
        state: NotificationState,
        root_url: str,
    ) -> bool:
        try:
            result = self.notify(build, workspace, config, state, root_url)
            if result.success:
                logger.info("Notified server")
            else:
                logger.warning("Failed to notify server (%s)", result.message)
        except Exception as exc:
            if _is_tls_verification_error(exc):
                logger.error(TLS_HINT)
            else:
                logger.exception("Caught exception while notifying server")
        return True

    def server_url(
        self,
        build: BuildSnapshot,
        workspace: Path | None,
        config: EffectiveConfig,
    ) -> str:
        raw = config.server_url
        url = try_expand(self.expander, build, workspace, raw).or_else(
            raw, "Unable to expand server URL",
        )
        return url.rstrip("/")

    def api_token(self, config: EffectiveConfig) -> str | None:
        credentials_id = config.credentials_id
        if not credentials_id or not credentials_id.strip():
            return None
        # The id doubles as the token when no store holds a secret for it.
        secret = self.credentials.resolve_secret(credentials_id)
        return secret if secret is not None else credentials_id

    def build_request(
        self,
        client: httpx.Client,
        url: str,
        body: bytes,
        config: EffectiveConfig,
    ) -> httpx.Request:
        headers = {"Content-Type": "application/json"}
        token = self.api_token(config)
        if token is not None:
            headers["Authorization"] = f"Api-Token {token}"
        return client.build_request("POST", url + EVENTS_PATH, content=body, headers=headers)

    def notify(
        self,
        build: BuildSnapshot,
        workspace: Path | None,
        config: EffectiveConfig,
        state: NotificationState,
        root_url: str,
    ) -> NotificationResult:
        """POST one event and classify the response. Transport errors propagate."""
        key = build_key(build, config, root_url, self.expander, workspace)
        payload = build_payload(build, state, key, config.entity_id, root_url)
        body = serialize_payload(payload)

        url = self.server_url(build, workspace, config)
        if not url:
            return NotificationResult.failed("no server URL configured")

        logger.info('Notifying server at "%s"', url)

        certificate = None
        if config.credentials_id:
            certificate = self.credentials.resolve_certificate(config.credentials_id)

        with create_client(
            url,
            ignore_unverified_ssl=config.ignore_unverified_ssl,
            certificate=certificate,
            proxy_config=config.proxy,
        ) as client:
            request = self.build_request(client, url, body, config)
            response = client.send(request)
            if response.status_code != 200:
                return NotificationResult.failed(response.text)
            return NotificationResult.succeeded()


def notify(
    build: BuildSnapshot,
    workspace: Path | None,
    settings: NotifierSettings,
    credentials: SecretResolver | None = None,
    expander: MacroExpander | None = None,
) -> bool:
    """Run the post-build notification for ``build`` with ``settings``."""
    return Notifier(settings, credentials, expander).after_build(build, workspace)
