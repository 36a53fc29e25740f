"""S3-backed object storage."""

from dataclasses import dataclass
from typing import Any, BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from tabletop_scribe.domain.uploads import ObjectContent, StoredObject, UploadedPart
from tabletop_scribe.services.storage import ObjectStorage, StorageError

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass
class S3ObjectStorage(ObjectStorage):
    """Object storage implemented with a boto3 S3 client."""

    client: Any

    @classmethod
    def create(
        cls,
        region: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ) -> "S3ObjectStorage":
        """Create storage with a boto3 client; missing keys fall back to the chain."""
        return cls(
            client=boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
            )
        )

    def put_object(
        self, bucket: str, key: str, body: BinaryIO, content_type: str
    ) -> StoredObject:
        """Write an object with a single PUT."""
        try:
            self.client.put_object(
                Bucket=bucket, Key=key, Body=body, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        return StoredObject(location=self._object_url(bucket, key), key=key)

    def presign_put(
        self, bucket: str, key: str, content_type: str, expires_in: int
    ) -> str:
        """Return a presigned PUT URL."""
        try:
            return self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc

    def create_multipart_upload(
        self, bucket: str, key: str, content_type: str | None = None
    ) -> str:
        """Start a multipart upload."""
        params: dict[str, object] = {"Bucket": bucket, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        try:
            response = self.client.create_multipart_upload(**params)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        return response["UploadId"]

    def upload_part(  # noqa: PLR0913
        self, bucket: str, key: str, upload_id: str, part_number: int, body: BinaryIO
    ) -> str:
        """Upload one part and return its ETag."""
        try:
            response = self.client.upload_part(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=body,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        return response["ETag"]

    def list_parts(self, bucket: str, key: str, upload_id: str) -> list[UploadedPart]:
        """Return every part S3 holds for the upload."""
        parts: list[UploadedPart] = []
        params: dict[str, object] = {"Bucket": bucket, "Key": key, "UploadId": upload_id}
        try:
            while True:
                response = self.client.list_parts(**params)
                parts.extend(
                    UploadedPart(part_number=row["PartNumber"], etag=row["ETag"])
                    for row in response.get("Parts", [])
                )
                if not response.get("IsTruncated"):
                    break
                params["PartNumberMarker"] = response["NextPartNumberMarker"]
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        return parts

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[UploadedPart]
    ) -> StoredObject:
        """Assemble the parts into the final object."""
        try:
            response = self.client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [
                        {"ETag": part.etag, "PartNumber": part.part_number}
                        for part in parts
                    ]
                },
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        return StoredObject(
            location=response.get("Location") or self._object_url(bucket, key),
            key=response.get("Key", key),
        )

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort the upload."""
        try:
            self.client.abort_multipart_upload(
                Bucket=bucket, Key=key, UploadId=upload_id
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc

    def get_object(self, bucket: str, key: str) -> ObjectContent | None:
        """Fetch an object, returning None when it does not exist."""
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                return None
            raise StorageError(str(exc)) from exc
        except BotoCoreError as exc:
            raise StorageError(str(exc)) from exc
        return ObjectContent(
            body=response["Body"].read(),
            content_type=response.get("ContentType") or "application/octet-stream",
        )

    def _object_url(self, bucket: str, key: str) -> str:
        region = self.client.meta.region_name
        return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"
