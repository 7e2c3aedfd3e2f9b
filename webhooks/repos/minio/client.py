"""
MinioClient protocol and the JSON object helpers shared by the MinIO
repositories.

The protocol captures only the ``minio.Minio`` methods the repositories
use, so tests can pass a fake client. ``create_minio_client`` builds the
real one from settings.
"""

import io
import logging
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Type,
    TypeVar,
    runtime_checkable,
)

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel

from cancellation.settings import Settings

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@runtime_checkable
class MinioClient(Protocol):
    def bucket_exists(self, bucket_name: str) -> bool:
        ...

    def make_bucket(self, bucket_name: str) -> None:
        ...

    def put_object(
        self,
        bucket_name: str,
        object_name: str,
        data: Any,
        length: int,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Any:
        ...

    def get_object(self, bucket_name: str, object_name: str) -> Any:
        """Return a response with ``read``, ``close`` and ``release_conn``.

        Raises:
            S3Error: ``NoSuchKey`` when the object does not exist
        """
        ...

    def remove_object(self, bucket_name: str, object_name: str) -> None:
        ...

    def list_objects(
        self, bucket_name: str, prefix: Optional[str] = None
    ) -> Iterable[Any]:
        """Yield objects exposing ``object_name``."""
        ...


def create_minio_client(settings: Settings) -> Minio:
    logger.debug(
        "Creating Minio client",
        extra={"minio_endpoint": settings.minio_endpoint},
    )
    return Minio(
        settings.minio_endpoint,
        access_key=settings.minio_access_key,
        secret_key=settings.minio_secret_key,
        secure=settings.minio_secure,
    )


class MinioJsonRepositoryMixin:
    """Stores each model as one JSON object named ``<id>.json``."""

    client: MinioClient

    def ensure_bucket_exists(self, bucket_name: str) -> None:
        try:
            if not self.client.bucket_exists(bucket_name):
                logger.info(
                    "Creating bucket", extra={"bucket_name": bucket_name}
                )
                self.client.make_bucket(bucket_name)
        except S3Error as e:
            logger.error(
                "Failed to create bucket",
                extra={"bucket_name": bucket_name, "error": str(e)},
            )
            raise

    def put_json_object(
        self, bucket_name: str, object_id: str, model: BaseModel
    ) -> None:
        data = model.model_dump_json().encode("utf-8")
        self.client.put_object(
            bucket_name=bucket_name,
            object_name=f"{object_id}.json",
            data=io.BytesIO(data),
            length=len(data),
            content_type="application/json",
        )

    def get_json_object(
        self, bucket_name: str, object_id: str, model_class: Type[M]
    ) -> Optional[M]:
        try:
            response = self.client.get_object(
                bucket_name=bucket_name, object_name=f"{object_id}.json"
            )
        except S3Error as e:
            if getattr(e, "code", None) == "NoSuchKey":
                return None
            raise
        try:
            return model_class.model_validate_json(response.read())
        finally:
            response.close()
            response.release_conn()

    def remove_json_object(self, bucket_name: str, object_id: str) -> None:
        self.client.remove_object(
            bucket_name=bucket_name, object_name=f"{object_id}.json"
        )

    def list_json_objects(
        self, bucket_name: str, model_class: Type[M]
    ) -> List[M]:
        models = []
        for obj in self.client.list_objects(bucket_name=bucket_name):
            name = obj.object_name
            if not name.endswith(".json"):
                continue
            model = self.get_json_object(
                bucket_name, name[: -len(".json")], model_class
            )
            if model is not None:
                models.append(model)
        return models
