"""CA certificates served by the SCEP responder.

Loads the issuing CA certificate and any RA/intermediate certificates from
PEM files and encodes them for GetCACert:

- a lone CA certificate is sent as DER (``application/x-x509-ca-cert``)
- CA plus RA/intermediates are sent as a degenerate PKCS#7
  (``application/x-x509-ca-ra-cert``)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from scep_adapter.audit.logger import log_ca_loaded
from scep_adapter.exceptions import CAStoreError, ConfigurationError

if TYPE_CHECKING:
    from pathlib import Path

    from scep_adapter.config import CAConfig


class CACertificateStore:
    """Issuing CA certificate plus optional RA/intermediate chain."""

    def __init__(self, ca_cert: x509.Certificate, chain: list[x509.Certificate] | None = None) -> None:
        """Initialize with already-loaded certificates.

        Args:
            ca_cert: Issuing CA certificate.
            chain: RA or intermediate certificates sent alongside it.
        """
        self._ca_cert = ca_cert
        self._chain = list(chain or [])

    @property
    def ca_certificate(self) -> x509.Certificate:
        """Get the CA certificate."""
        return self._ca_cert

    @property
    def certificates(self) -> list[x509.Certificate]:
        """CA certificate followed by the chain."""
        return [self._ca_cert, *self._chain]

    def get_ca_cert(self) -> tuple[bytes, int]:
        """Encode certificates for a GetCACert answer.

        Returns:
            Tuple of payload and certificate count.
        """
        certs = self.certificates
        if len(certs) == 1:
            return self._ca_cert.public_bytes(serialization.Encoding.DER), 1
        return pkcs7.serialize_certificates(certs, serialization.Encoding.DER), len(certs)


def _load_pem_certificates(path: Path) -> list[x509.Certificate]:
    try:
        data = path.read_bytes()
        return x509.load_pem_x509_certificates(data)
    except FileNotFoundError as e:
        raise CAStoreError.cert_load_failed(path=str(path), reason="file not found") from e
    except ValueError as e:
        raise CAStoreError.cert_load_failed(path=str(path), reason=str(e)) from e


def create_ca_store(config: CAConfig) -> CACertificateStore:
    """Create CA certificate store from configuration.

    The first certificate in ``cert_file`` is the issuing CA; any further
    certificates there and in ``chain_files`` form the chain.

    Raises:
        ConfigurationError: If no CA certificate file is configured.
        CAStoreError: If a certificate file cannot be loaded.
    """
    if config.cert_file is None:
        raise ConfigurationError.missing_required(field="ca.cert_file")

    ca_cert, *chain = _load_pem_certificates(config.cert_file)
    for path in config.chain_files:
        chain.extend(_load_pem_certificates(path))

    log_ca_loaded(ca_subject=ca_cert.subject.rfc4514_string(), chain_length=len(chain) + 1)

    return CACertificateStore(ca_cert, chain)
