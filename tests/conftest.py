"""
tests/conftest.py - shared pytest fixtures

Fake boto3 sessions and clients so nothing here talks to AWS.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


def paginator(pages):
    """A boto3-style paginator whose paginate() yields the given pages."""
    p = MagicMock()
    p.paginate.return_value = pages
    return p


@pytest.fixture
def make_session():
    """Build a session whose client(service) returns the supplied mocks."""

    def _make(**clients):
        session = MagicMock()
        session.client.side_effect = lambda service, region_name=None: clients[service]
        return session

    return _make


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
