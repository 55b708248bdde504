"""
TLS serving policy for virt-api.

Client certificates are verified when presented but not required, since the
aggregation layer probes the service without one. Request handlers that need
an authenticated caller check for a verified peer certificate themselves.

The trusted client CAs come from DynamicCAPool and are re-read on every
handshake through the SNI callback, which switches the connection to a
context carrying the current CA set.
"""

import hashlib
import logging
import os
import ssl
import tempfile
import threading

from ..errors import EncodingError
from ..models import Identity, TrustSnapshot
from .ca_pool import DynamicCAPool

logger = logging.getLogger(__name__)

CERT_FILE_NAME = "tls.crt"
KEY_FILE_NAME = "tls.key"


class TLSServingPolicy:
    """Server TLS contexts that track the current trusted client CA set."""

    def __init__(self, certfile: str, keyfile: str, pool: DynamicCAPool):
        self.certfile = certfile
        self.keyfile = keyfile
        self.pool = pool
        self._lock = threading.Lock()
        self._cached: tuple[str, ssl.SSLContext] | None = None

        # The listener's context; trust is replaced per connection in the SNI callback
        self.context = self.context_for(pool.current())
        self.context.sni_callback = self._select_context

    def new_context(self, client_ca: str | None) -> ssl.SSLContext:
        """Build a server context trusting ``client_ca`` for client certificates."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        try:
            context.load_cert_chain(certfile=self.certfile, keyfile=self.keyfile)
        except ssl.SSLError as e:
            raise EncodingError(f"Invalid serving key pair: {e}", cause=e) from e
        context.verify_mode = ssl.CERT_OPTIONAL
        if client_ca:
            context.load_verify_locations(cadata=client_ca)
        return context

    def context_for(self, snapshot: TrustSnapshot) -> ssl.SSLContext:
        """Context for a trust snapshot, cached until the snapshot changes."""
        client_ca = snapshot.config.request_header_client_ca
        cache_key = snapshot.revision or hashlib.sha256(client_ca.encode()).hexdigest()

        with self._lock:
            if self._cached is not None and self._cached[0] == cache_key:
                return self._cached[1]

        context = self.new_context(client_ca)
        with self._lock:
            self._cached = (cache_key, context)
        logger.debug(f"Built TLS context for trust revision {cache_key}")
        return context

    def _select_context(
        self,
        ssl_object: ssl.SSLObject | ssl.SSLSocket,
        server_name: str | None,
        listener_context: ssl.SSLContext,
    ) -> None:
        try:
            context = self.context_for(self.pool.current())
        except Exception as e:
            # Keep the connection on the listener's context and its CA set
            logger.error(f"Failed to refresh client CA pool: {e}")
            return None
        if context is not listener_context:
            ssl_object.context = context
        return None


class TLSContextBuilder:
    """Writes the serving key pair to disk and builds the serving policy."""

    def __init__(self, certs_dir: str = ""):
        self.certs_dir = certs_dir

    def build(self, identity: Identity, pool: DynamicCAPool) -> TLSServingPolicy:
        """
        Build the TLS serving policy.

        Args:
            identity: Identity whose leaf certificate and key are served
            pool: Source of the trusted client CAs

        Returns:
            Policy whose ``context`` is handed to the HTTPS listener

        Raises:
            EncodingError: If the leaf certificate and key do not form a pair
        """
        certs_dir = self.certs_dir or tempfile.mkdtemp(prefix="certsdir")
        os.makedirs(certs_dir, exist_ok=True)

        certfile = os.path.join(certs_dir, CERT_FILE_NAME)
        keyfile = os.path.join(certs_dir, KEY_FILE_NAME)
        with open(certfile, "wb") as f:
            f.write(identity.cert)
        fd = os.open(keyfile, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(identity.key)

        logger.info(f"Serving certificate written to {certs_dir}")
        return TLSServingPolicy(certfile, keyfile, pool)
