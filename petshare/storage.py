"""Object storage access for uploaded images.

``ObjectStore`` binds a backend client to one bucket. Uploads get a
client-generated, collision-free object name and fail with
``RemoteOperationError``; public URLs are derived locally.

Example:
    >>> photos = ObjectStore(client, settings.photo_bucket)
    >>> path = await photos.upload(selected_file)
    >>> photos.public_url(path)
    'https://xyz.supabase.co/storage/v1/object/public/pet_photos/3f2a....jpg'
"""

from petshare.api import RemoteOperationError
from petshare.config import settings
from petshare.interfaces import IBackendClient
from petshare.logging import logger
from petshare.models import SelectedFile
from petshare.utils import unique_object_name


class ObjectStore:
    """One storage bucket.

    Args:
        client: Backend client
        bucket: Bucket name
        cache_control: Cache-Control max-age for uploads (defaults to settings)
    """

    def __init__(self, client: IBackendClient, bucket: str, cache_control: str | None = None):
        self.client = client
        self.bucket = bucket
        self.cache_control = cache_control or settings.upload_cache_control

    async def upload(self, file: SelectedFile, prefix: str | None = None) -> str:
        """Upload a file under a unique name.

        Args:
            file: File to upload
            prefix: Optional owner id prepended to the generated name

        Returns:
            Stored object path within the bucket

        Raises:
            RemoteOperationError: If the store rejects the upload
        """
        path = unique_object_name(file.name, prefix=prefix)
        response = await self.client.upload_object(
            self.bucket,
            path,
            file.content,
            content_type=file.content_type,
            cache_control=self.cache_control,
            upsert=False,
        )
        if response.error:
            raise RemoteOperationError(f"upload to {self.bucket}", response.error)

        logger.debug(f"Uploaded {file.name} to {self.bucket}/{response.data}")
        return response.data

    def public_url(self, path: str) -> str:
        """Public URL for a stored path."""
        return self.client.public_url(self.bucket, path)

    async def upload_public(self, file: SelectedFile, prefix: str | None = None) -> str:
        """Upload a file and return its public URL."""
        return self.public_url(await self.upload(file, prefix=prefix))
