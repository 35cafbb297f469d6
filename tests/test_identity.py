"""Tests for the STS identity check."""

import pytest

from teleport_helper.credentials import identity
from teleport_helper.credentials.models import CredentialSet


class FakeClient:
    def get_caller_identity(self):
        return {"Account": "123456789012", "UserId": "AIDAEXAMPLE", "Arn": "arn:aws:sts::123456789012:assumed-role/dev/me"}


class FakeSession:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.clients = []
        sessions.append(self)

    def client(self, service, **kwargs):
        self.clients.append((service, kwargs))
        return FakeClient()


sessions = []


@pytest.fixture(autouse=True)
def fake_boto3(monkeypatch):
    sessions.clear()
    monkeypatch.setattr(identity.boto3, "Session", FakeSession)


def make_credentials(**extra):
    pairs = [("AWS_ACCESS_KEY_ID", "AKIAEXAMPLE"), ("AWS_SECRET_ACCESS_KEY", "secret")]
    return CredentialSet(pairs + list(extra.items()))


def test_session_uses_explicit_keys():
    identity.create_session(make_credentials(AWS_DEFAULT_REGION="us-east-2"))
    assert sessions[0].kwargs == {
        "aws_access_key_id": "AKIAEXAMPLE",
        "aws_secret_access_key": "secret",
        "region_name": "us-east-2",
    }


def test_session_requires_key_pair():
    with pytest.raises(ValueError):
        identity.create_session(CredentialSet([("AWS_ACCESS_KEY_ID", "AKIAEXAMPLE")]))


def test_client_goes_through_proxy():
    credentials = make_credentials(
        HTTPS_PROXY="http://127.0.0.1:51234",
        AWS_CA_BUNDLE="/home/me/.tsh/ca.pem",
    )
    identity.create_client("sts", credentials)

    service, kwargs = sessions[0].clients[0]
    assert service == "sts"
    assert kwargs["verify"] == "/home/me/.tsh/ca.pem"
    assert kwargs["config"].proxies == {"https": "http://127.0.0.1:51234"}


def test_client_without_proxy():
    identity.create_client("sts", make_credentials())
    assert sessions[0].clients[0] == ("sts", {})


@pytest.mark.asyncio
async def test_verify_credentials():
    result = await identity.verify_credentials(make_credentials())
    assert result == {
        "account_id": "123456789012",
        "user_id": "AIDAEXAMPLE",
        "arn": "arn:aws:sts::123456789012:assumed-role/dev/me",
    }
