"""Shared fixtures for tests."""

import json
import os

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# Force test settings before any package imports
os.environ["FIREBASE_URL"] = "https://test-project.firebaseio.com/"
os.environ["FIREBASE_CREDENTIALS"] = ""
os.environ["FIREBASE_WATCH_BUFFER"] = "64"

TEST_URL = "https://test-project.firebaseio.com/"
TEST_EMAIL = "svc@test-project.iam.gserviceaccount.com"
TEST_TOKEN_URI = "https://oauth2.example.com/token"


@pytest.fixture(scope="session")
def rsa_key():
    """A throwaway RSA key pair for signing tokens."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def public_key_pem(rsa_key) -> str:
    return rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


@pytest.fixture
def service_account(private_key_pem) -> dict:
    """Contents of a service account key file."""
    return {
        "type": "service_account",
        "project_id": "test-project",
        "private_key_id": "abc123",
        "private_key": private_key_pem,
        "client_email": TEST_EMAIL,
        "token_uri": TEST_TOKEN_URI,
    }


@pytest.fixture
def service_account_file(tmp_path, service_account):
    path = tmp_path / "creds.json"
    path.write_text(json.dumps(service_account))
    return path
