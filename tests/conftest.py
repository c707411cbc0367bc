"""
Shared fixtures for pactmock tests.
"""

import ipaddress
import json
import socket
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID


@pytest.fixture
def mallory_contract():
    """Single-interaction contract: GET /mallory?name=ron&status=good."""
    return {
        'consumer': {'name': 'mallory-consumer'},
        'provider': {'name': 'mallory-provider'},
        'interactions': [
            {
                'description': 'a request to be nice to Mallory',
                'request': {
                    'method': 'GET',
                    'path': '/mallory',
                    'query': 'name=ron&status=good'
                },
                'response': {
                    'status': 200,
                    'headers': {'Content-Type': 'text/html'},
                    'body': 'That is some good Mallory.'
                }
            }
        ],
        'metadata': {'pactSpecification': {'version': '2.0.0'}}
    }


@pytest.fixture
def mallory_contract_text(mallory_contract):
    return json.dumps(mallory_contract)


@pytest.fixture
def users_contract():
    """Contract with JSON bodies, headers and matching rules."""
    return {
        'consumer': {'name': 'web'},
        'provider': {'name': 'users-api'},
        'interactions': [
            {
                'description': 'get user 123',
                'providerState': 'user 123 exists',
                'request': {
                    'method': 'GET',
                    'path': '/users/123',
                    'headers': {'Accept': 'application/json'}
                },
                'response': {
                    'status': 200,
                    'headers': {'Content-Type': 'application/json'},
                    'body': {'id': 123, 'name': 'John Doe', 'roles': ['admin']}
                }
            },
            {
                'description': 'create a user',
                'request': {
                    'method': 'POST',
                    'path': '/users',
                    'headers': {'Content-Type': 'application/json'},
                    'body': {'name': 'Jane Smith', 'age': 30},
                    'matchingRules': {
                        '$.body.name': {'match': 'type'},
                        '$.body.age': {'match': 'type'}
                    }
                },
                'response': {
                    'status': 201,
                    'body': {'id': 456}
                }
            }
        ]
    }


@pytest.fixture
def empty_contract_text():
    return json.dumps({
        'consumer': {'name': 'nobody'},
        'provider': {'name': 'nothing'},
        'interactions': []
    })


@pytest.fixture
def occupied_port():
    """A port with a live listener on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture(scope='session')
def tls_files(tmp_path_factory):
    """Self-signed certificate and key for 127.0.0.1, as (certfile, keyfile)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, 'pactmock-test'),
    ])
    now = datetime.now(timezone.utc)
    cert = x509.CertificateBuilder().subject_name(
        subject
    ).issuer_name(
        issuer
    ).public_key(
        private_key.public_key()
    ).serial_number(
        x509.random_serial_number()
    ).not_valid_before(
        now - timedelta(minutes=5)
    ).not_valid_after(
        now + timedelta(days=1)
    ).add_extension(
        x509.SubjectAlternativeName([
            x509.DNSName('localhost'),
            x509.IPAddress(ipaddress.ip_address('127.0.0.1')),
        ]),
        critical=False,
    ).sign(private_key, hashes.SHA256())

    directory = tmp_path_factory.mktemp('tls')
    certfile = directory / 'cert.pem'
    keyfile = directory / 'key.pem'
    certfile.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    keyfile.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption()
    ))
    return str(certfile), str(keyfile)
