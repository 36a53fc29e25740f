"""AWS Lambda invocation adapter."""

import json
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from tabletop_scribe.services.processing import FunctionInvoker, ProcessingInvokerError


@dataclass
class LambdaInvoker(FunctionInvoker):
    """Invokes Lambda functions with a boto3 client."""

    client: Any

    @classmethod
    def create(
        cls,
        region: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ) -> "LambdaInvoker":
        """Create an invoker with a boto3 Lambda client."""
        return cls(
            client=boto3.client(
                "lambda",
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
            )
        )

    def invoke_async(self, function_name: str, payload: dict[str, object]) -> int:
        """Queue an Event invocation."""
        try:
            response = self.client.invoke(
                FunctionName=function_name,
                InvocationType="Event",
                Payload=json.dumps(payload).encode("utf-8"),
            )
        except (BotoCoreError, ClientError) as exc:
            raise ProcessingInvokerError(str(exc)) from exc
        return int(response["StatusCode"])
