"""
Langfuse tracing client for codeloop.

Uses the Langfuse SDK v3 (OpenTelemetry-based) API. The client is built
from LangfuseConfig and handed to the engine explicitly; when credentials
are missing or the server is unreachable it stays disabled and every
tracing call becomes a no-op.
"""

import logging
from typing import Any, Optional

from langfuse import Langfuse

from ..models import LangfuseConfig

logger = logging.getLogger(__name__)


class TracingClient:
    """Langfuse client wrapper that degrades to a disabled state."""

    def __init__(
        self,
        public_key: str = "",
        secret_key: str = "",
        host: str = "",
        debug: bool = False,
        langfuse_factory: Any = Langfuse,
    ):
        """
        Args:
            public_key: Langfuse public key
            secret_key: Langfuse secret key
            host: Langfuse host URL (optional)
            debug: Enable debug logging in langfuse
            langfuse_factory: Callable building the SDK client
        """
        self._client: Optional[Langfuse] = None
        self._enabled = False
        self._error: Optional[str] = None

        if not public_key or not secret_key:
            self._error = "Langfuse credentials not configured"
            logger.debug(f"Tracing disabled: {self._error}")
            return

        if host and not host.startswith(("http://", "https://")):
            logger.warning(
                f"Langfuse host '{host}' has no scheme; "
                "expected http://hostname:port or https://hostname:port"
            )

        kwargs: dict[str, Any] = {
            "public_key": public_key,
            "secret_key": secret_key,
            "debug": debug,
        }
        if host:
            kwargs["host"] = host

        try:
            self._client = langfuse_factory(**kwargs)
        except Exception as e:
            self._error = f"Failed to initialize Langfuse client: {e}"
            logger.warning(f"Tracing disabled: {self._error}")
            return

        if self._check_auth():
            self._enabled = True
            logger.info(f"Langfuse tracing enabled (host: {host or 'default'})")

    @classmethod
    def from_config(cls, config: LangfuseConfig, **kwargs: Any) -> "TracingClient":
        """Build a client from config; disabled unless enabled and configured."""
        if not config.enabled:
            return cls(**kwargs)
        return cls(
            public_key=config.public_key,
            secret_key=config.secret_key,
            host=config.host,
            debug=config.debug,
            **kwargs,
        )

    def _check_auth(self) -> bool:
        """Verify credentials and connectivity once, at startup."""
        try:
            ok = bool(self._client.auth_check())
        except Exception as e:
            ok = False
            self._error = f"Langfuse connectivity check failed: {e}"
        else:
            if not ok:
                self._error = "Langfuse auth_check() failed; check host and credentials"

        if not ok:
            logger.warning(f"Tracing disabled: {self._error}")
            self._client = None
        return ok

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def error(self) -> Optional[str]:
        """Why tracing is disabled, if it is."""
        return self._error

    @property
    def client(self) -> Optional[Langfuse]:
        return self._client

    def flush(self) -> None:
        """Flush pending events to Langfuse."""
        if not self._enabled or not self._client:
            return
        try:
            self._client.flush()
        except Exception as e:
            logger.warning(f"Failed to flush tracing events: {e}")

    def shutdown(self) -> None:
        """Flush and shut the SDK client down."""
        if not self._enabled or not self._client:
            return
        try:
            self._client.shutdown()
            logger.info("Langfuse tracing client shutdown complete")
        except Exception as e:
            logger.warning(f"Error during tracing client shutdown: {e}")
        finally:
            self._enabled = False
