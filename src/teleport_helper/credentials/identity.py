"""Confirm exported credentials work by asking STS who they belong to."""

import asyncio
import logging
from typing import Dict

import boto3
from botocore.config import Config as BotoConfig

from .models import CredentialSet


logger = logging.getLogger(__name__)


def create_session(credentials: CredentialSet) -> boto3.Session:
    """Create a boto3 session from explicit credentials only.

    Args:
        credentials: Credentials exported by the proxy

    Returns:
        Configured boto3 session
    """
    values = credentials.as_dict()
    access_key = values.get("AWS_ACCESS_KEY_ID")
    secret_key = values.get("AWS_SECRET_ACCESS_KEY")
    if not (access_key and secret_key):
        raise ValueError("Credential set has no AWS access key pair")

    session_params = {
        "aws_access_key_id": access_key,
        "aws_secret_access_key": secret_key,
    }

    if values.get("AWS_SESSION_TOKEN"):
        session_params["aws_session_token"] = values["AWS_SESSION_TOKEN"]

    if values.get("AWS_DEFAULT_REGION"):
        session_params["region_name"] = values["AWS_DEFAULT_REGION"]

    return boto3.Session(**session_params)


def create_client(service: str, credentials: CredentialSet):
    """Create a client that talks through the local Teleport proxy.

    The proxy address and its CA bundle come from the credential set, not
    from the process environment.
    """
    values = credentials.as_dict()
    client_params = {}

    if values.get("HTTPS_PROXY"):
        client_params["config"] = BotoConfig(proxies={"https": values["HTTPS_PROXY"]})

    if values.get("AWS_CA_BUNDLE"):
        client_params["verify"] = values["AWS_CA_BUNDLE"]

    return create_session(credentials).client(service, **client_params)


def get_caller_identity(credentials: CredentialSet) -> Dict[str, str]:
    """Get the AWS account information for a credential set."""
    response = create_client("sts", credentials).get_caller_identity()
    return {
        "account_id": response["Account"],
        "user_id": response["UserId"],
        "arn": response["Arn"]
    }


async def verify_credentials(credentials: CredentialSet) -> Dict[str, str]:
    """Run the STS identity check without blocking the event loop."""
    identity = await asyncio.to_thread(get_caller_identity, credentials)
    logger.info(f"Credentials belong to {identity['arn']}")
    return identity
