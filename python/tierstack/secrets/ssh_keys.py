"""
tierstack/secrets/ssh_keys.py

SSH key material for the node key pair. The private key is written once with
mode 0400 and never re-emitted; if the file already exists it is reused and
only its public half is derived.
"""

from __future__ import annotations

import os

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel


class SSHKeyPair(BaseModel):
    """
    Attributes:
        private_key_path: Where the private key lives on the operator machine.
        public_key: OpenSSH-format public key registered with the provider.
        created: True if the private key was generated by this call.
    """

    private_key_path: str
    public_key: str
    created: bool


def _public_openssh(private_key: rsa.RSAPrivateKey) -> str:
    return (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        )
        .decode("ascii")
    )


def load_or_create_key_pair(path: str, key_size: int = 4096) -> SSHKeyPair:
    """
    Return the key pair at `path`, generating and writing it first if missing.

    Raises:
        ValueError: If an existing file does not hold an RSA private key.
    """
    if os.path.exists(path):
        with open(path, "rb") as handle:
            loaded = serialization.load_pem_private_key(handle.read(), password=None)
        if not isinstance(loaded, rsa.RSAPrivateKey):
            raise ValueError(f"{path} does not contain an RSA private key.")
        return SSHKeyPair(
            private_key_path=path, public_key=_public_openssh(loaded), created=False
        )

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o400)
    with os.fdopen(fd, "wb") as handle:
        handle.write(pem)

    return SSHKeyPair(
        private_key_path=path, public_key=_public_openssh(private_key), created=True
    )
