"""Shared fixtures: a throwaway CA, its certificates and a TLS EPP server."""

from __future__ import annotations

import asyncio
import datetime
import ipaddress
import ssl
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from epp_proxy.framing import FrameWriteError, write_frame


@dataclass(frozen=True)
class TLSFiles:
    """PEM files on disk for a loopback TLS setup.

    Args:
        ca_cert: Self-signed CA that issued both leaf certificates.
        server_cert: Certificate for 127.0.0.1 (IP subjectAltName).
        server_key: Key for ``server_cert``.
        client_cert: Certificate for EPP client authentication.
        client_key: Key for ``client_cert``.
    """

    ca_cert: Path
    server_cert: Path
    server_key: Path
    client_cert: Path
    client_key: Path


def _new_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _write_key(path: Path, key: rsa.RSAPrivateKey) -> Path:
    path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return path


def _write_cert(path: Path, cert: x509.Certificate) -> Path:
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    return path


def _create_ca(now: datetime.datetime) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
    key = _new_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "epp-proxy test CA")])
    builder = (
        x509.CertificateBuilder()
        .serial_number(x509.random_serial_number())
        .subject_name(name)
        .issuer_name(name)
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .public_key(key.public_key())
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=False,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
    )
    return key, builder.sign(private_key=key, algorithm=hashes.SHA256())


def _issue(
    ca_key: rsa.RSAPrivateKey,
    ca_cert: x509.Certificate,
    common_name: str,
    san: x509.GeneralName,
    usage: x509.ObjectIdentifier,
    now: datetime.datetime,
) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
    key = _new_key()
    builder = (
        x509.CertificateBuilder()
        .serial_number(x509.random_serial_number())
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .issuer_name(ca_cert.subject)
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .public_key(key.public_key())
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.SubjectAlternativeName([san]), critical=False)
        .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
    )
    return key, builder.sign(private_key=ca_key, algorithm=hashes.SHA256())


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory: pytest.TempPathFactory) -> TLSFiles:
    """Write a CA, a 127.0.0.1 server certificate and a client certificate."""
    directory = tmp_path_factory.mktemp("tls")
    now = datetime.datetime.now(datetime.timezone.utc)
    ca_key, ca_cert = _create_ca(now)
    server_key, server_cert = _issue(
        ca_key,
        ca_cert,
        "127.0.0.1",
        x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        ExtendedKeyUsageOID.SERVER_AUTH,
        now,
    )
    client_key, client_cert = _issue(
        ca_key,
        ca_cert,
        "registrar.test",
        x509.DNSName("registrar.test"),
        ExtendedKeyUsageOID.CLIENT_AUTH,
        now,
    )
    return TLSFiles(
        ca_cert=_write_cert(directory / "ca.pem", ca_cert),
        server_cert=_write_cert(directory / "server.pem", server_cert),
        server_key=_write_key(directory / "server.key", server_key),
        client_cert=_write_cert(directory / "client.pem", client_cert),
        client_key=_write_key(directory / "client.key", client_key),
    )


class TLSEPPServer:
    """Loopback EPP server behind TLS: greets, then answers nothing.

    Args:
        files: Certificates to serve with.
        require_client_cert: Demand a client certificate signed by the CA.
    """

    greeting = (
        b'<epp xmlns="urn:ietf:params:xml:ns:epp-1.0">'
        b"<greeting><svID>TLS registry</svID></greeting></epp>"
    )

    def __init__(self, files: TLSFiles, require_client_cert: bool = False) -> None:
        self.files = files
        self.require_client_cert = require_client_cert
        self.client_names: list[str] = []
        self._server: asyncio.Server | None = None

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(
            certfile=str(self.files.server_cert), keyfile=str(self.files.server_key)
        )
        if self.require_client_cert:
            context.verify_mode = ssl.CERT_REQUIRED
            context.load_verify_locations(cafile=str(self.files.ca_cert))
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0, ssl=context)

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peercert = writer.get_extra_info("peercert")
        if peercert:
            for rdn in peercert["subject"]:
                self.client_names.extend(value for key, value in rdn if key == "commonName")
        try:
            await write_frame(writer, self.greeting)
            await reader.read()
        except (FrameWriteError, OSError):
            pass
        finally:
            writer.close()


@pytest.fixture
async def tls_upstream(tls_files: TLSFiles) -> AsyncIterator[TLSEPPServer]:
    server = TLSEPPServer(tls_files)
    await server.start()
    yield server
    await server.close()


@pytest.fixture
async def mtls_upstream(tls_files: TLSFiles) -> AsyncIterator[TLSEPPServer]:
    server = TLSEPPServer(tls_files, require_client_cert=True)
    await server.start()
    yield server
    await server.close()
