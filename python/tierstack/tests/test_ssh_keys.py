"""
Tests for SSH key pair material: written once with 0400, reused afterwards.
"""

import os
import stat

import pytest

from tierstack.secrets.ssh_keys import load_or_create_key_pair


def test_key_written_once_and_reused(tmp_path):
    path = str(tmp_path / "node-key.pem")

    created = load_or_create_key_pair(path, key_size=2048)
    assert created.created
    assert created.public_key.startswith("ssh-rsa ")
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o400
    with open(path, "rb") as handle:
        first_bytes = handle.read()

    reused = load_or_create_key_pair(path, key_size=2048)
    assert not reused.created
    assert reused.public_key == created.public_key
    with open(path, "rb") as handle:
        assert handle.read() == first_bytes


def test_non_rsa_key_file_is_rejected(tmp_path):
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import ed25519

    path = tmp_path / "ed25519.pem"
    path.write_bytes(
        ed25519.Ed25519PrivateKey.generate().private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    with pytest.raises(ValueError, match="RSA"):
        load_or_create_key_pair(str(path))
