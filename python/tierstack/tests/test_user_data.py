"""
Tests for bootstrap payload assembly and the node startup script.
"""

from urllib.parse import unquote, urlsplit

import pytest
from pydantic import SecretStr

from tierstack.bootstrap.payload import (
    build_bootstrap_payload,
    build_bootstrap_variables,
    connection_urls,
)
from tierstack.bootstrap.user_data import (
    decode_user_data,
    encode_user_data,
    extract_payload,
    render_user_data,
)
from tierstack.models.stack_config import BootstrapConfig, ContainerConfig


def test_connection_urls_quote_credentials():
    pooled, direct = connection_urls(
        "db.example.internal", 5432, "pharmadb", "dbadmin", SecretStr("p@ss/word:42")
    )
    parts = urlsplit(direct.get_secret_value())
    assert parts.hostname == "db.example.internal"
    assert parts.port == 5432
    assert unquote(parts.password) == "p@ss/word:42"
    assert pooled.get_secret_value() == direct.get_secret_value() + "?schema=public"


def test_variables_use_camel_case_names(stack_secrets):
    variables = build_bootstrap_variables(
        secrets=stack_secrets,
        container=ContainerConfig(),
        db_host="db.example.internal",
        db_port=5432,
        db_name="pharmadb",
        db_username="dbadmin",
    )
    dumped = variables.model_dump(by_alias=True)
    assert set(dumped) == {
        "registryUsername",
        "registryToken",
        "databaseConnectionURL",
        "directConnectionURL",
        "authServiceSecretKey",
        "authServicePublicKey",
        "paymentGatewaySecretKey",
        "paymentGatewayPublicKey",
        "containerImageReference",
    }
    assert dumped["containerImageReference"] == "acme/pharma-webapp:latest"
    assert dumped["databaseConnectionURL"] == "**********"


def test_payload_maps_container_environment(stack_secrets):
    variables = build_bootstrap_variables(
        secrets=stack_secrets,
        container=ContainerConfig(),
        db_host="db.example.internal",
        db_port=5432,
        db_name="pharmadb",
        db_username="dbadmin",
    )
    payload = build_bootstrap_payload(variables, ContainerConfig(), BootstrapConfig())
    env = payload.container_environment()

    assert env["DATABASE_URL"].endswith("@db.example.internal:5432/pharmadb?schema=public")
    assert env["DIRECT_URL"].endswith("@db.example.internal:5432/pharmadb")
    assert env["CLERK_SECRET_KEY"] == "sk_test_auth"
    assert env["NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY"] == "pk_test_auth"
    assert env["PAYSTACK_SECRET_KEY"] == "sk_test_pay"
    assert env["NEXT_PUBLIC_PAYSTACK_PUBLIC_KEY"] == "pk_test_pay"
    assert env["NEXT_PUBLIC_CLERK_AFTER_SIGN_IN_URL"] == "/dashboard"
    assert payload.container.name == "pharma-app"
    assert (payload.container.host_port, payload.container.container_port) == (80, 3000)
    assert payload.log_path == "/var/log/user-data.log"


def test_secrets_masked_unless_revealed(payload, registry_token):
    assert registry_token not in payload.model_dump_json()
    assert registry_token not in repr(payload)
    assert registry_token in payload.to_wire()


def test_script_embeds_payload_without_plaintext_secrets(payload, registry_token):
    script = render_user_data(payload, "python3 -m tierstack.bootstrap.reconciler")

    assert script.startswith("#!/bin/bash\n")
    assert "umask 077" in script
    assert registry_token not in script
    assert "postgresql://" not in script
    assert (
        'python3 -m tierstack.bootstrap.reconciler --payload "$PAYLOAD_PATH"' in script
    )

    recovered = extract_payload(script)
    assert recovered.registry.token.get_secret_value() == registry_token
    assert recovered.container_environment() == payload.container_environment()


def test_encoded_user_data_round_trip(payload):
    script = render_user_data(payload, "tierstack-bootstrap")
    assert decode_user_data(encode_user_data(script)) == script


def test_extract_payload_requires_block():
    with pytest.raises(ValueError):
        extract_payload("#!/bin/bash\necho hello\n")
