from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

import boto3
from botocore.client import BaseClient
from botocore.config import Config

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBClient
else:
    DynamoDBClient = BaseClient  # type: ignore[misc,assignment]


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True, slots=True)
class AwsRuntimeConfig:
    """Where boto3 should send requests.

    Env vars:
      - ENDPOINT_URL: explicit endpoint (LocalStack or a VPC endpoint)
      - USE_LOCALSTACK + LOCALSTACK_ENDPOINT_URL: fallback when ENDPOINT_URL
        is unset
      - AWS_REGION (default: eu-west-1)
      - AWS_MAX_ATTEMPTS: retry budget per call (default 3)
    """

    region: str
    endpoint_url: str | None
    max_attempts: int = 3

    @staticmethod
    def from_env() -> "AwsRuntimeConfig":
        endpoint_url = (os.getenv("ENDPOINT_URL") or "").strip() or None
        if endpoint_url is None and _env_flag("USE_LOCALSTACK"):
            endpoint_url = os.getenv("LOCALSTACK_ENDPOINT_URL", "http://localhost:4566")

        return AwsRuntimeConfig(
            region=os.getenv("AWS_REGION", "eu-west-1"),
            endpoint_url=endpoint_url,
            max_attempts=int(os.getenv("AWS_MAX_ATTEMPTS") or 3),
        )


@lru_cache(maxsize=8)
def _client(service: str, cfg: AwsRuntimeConfig) -> BaseClient:
    session = boto3.session.Session(region_name=cfg.region)
    return session.client(
        service,
        endpoint_url=cfg.endpoint_url,
        config=Config(
            retries={"max_attempts": cfg.max_attempts, "mode": "standard"},
            connect_timeout=2,
            read_timeout=5,
        ),
    )


def dynamodb_client() -> DynamoDBClient:
    """Shared client for the current environment.

    boto3 clients are thread-safe, so one instance serves every worker
    thread; a changed environment yields a new client.
    """

    return _client("dynamodb", AwsRuntimeConfig.from_env())
