"""
Filesystem-backed registry of uploaded and generated assets.

Every asset lives in its own directory under the archives root::

    archives/{file_id}/{original_filename}

The file identifier (``file_`` followed by a UUID v4) is minted when the
asset is created and never reused, so concurrent uploads cannot collide
and no lock is taken around the registry.  A concurrent delete and read
of the same identifier is a benign race: the reader observes
``FileObjectNotFoundError``.

All methods are synchronous.  Route handlers call them through
``asyncio.to_thread`` so a slow disk never stalls unrelated requests.

Metadata index
--------------
Metadata of files created by this process (notably ``purpose``) is kept
in an in-memory index.  Files found on disk without an index entry (for
example, files written by the inference engine or by a previous process
run) are described from the filesystem alone: size and modification
time, with the default purpose.  The filesystem remains the source of
truth for existence: an index entry whose backing file has disappeared
is reported as not found.
"""

import dataclasses
import os
import pathlib
import re
import shutil
import time
import uuid

import structlog

import image_gateway.exceptions
import image_gateway.models

logger = structlog.get_logger()

# Download content types.  Extensions outside this allow-list are refused
# rather than served as ``application/octet-stream``.
CONTENT_TYPES_BY_EXTENSION: dict[str, str] = {
    "txt": "text/plain",
    "json": "application/json",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "md": "text/markdown",
}

_FILE_IDENTIFIER_PATTERN = re.compile(
    re.escape(image_gateway.models.FILE_IDENTIFIER_PREFIX) + r"[A-Za-z0-9_-]+",
)


def generate_file_identifier() -> str:
    """Mint a new, globally unique file identifier."""
    return f"{image_gateway.models.FILE_IDENTIFIER_PREFIX}{uuid.uuid4()}"


def is_valid_file_identifier(file_id: str) -> bool:
    """
    Return whether ``file_id`` has the ``file_`` prefix and is a single,
    safe path component.
    """
    return _FILE_IDENTIFIER_PATTERN.fullmatch(file_id) is not None


@dataclasses.dataclass(frozen=True)
class DownloadedFile:
    """A stored asset resolved for download."""

    filename: str
    content: bytes
    content_type: str


class FileRegistry:
    """
    Owns the mapping from file identifier to stored asset.

    Args:
        archives_directory: Root directory holding one sub-directory per
            file.  Created on first upload if it does not exist.
    """

    def __init__(self, archives_directory: str | os.PathLike[str]) -> None:
        self._archives_directory = pathlib.Path(archives_directory)
        self._file_objects_by_id: dict[str, image_gateway.models.FileObject] = {}

    @property
    def archives_directory(self) -> pathlib.Path:
        return self._archives_directory

    def create(
        self,
        filename: str,
        content: bytes,
        purpose: str = image_gateway.models.DEFAULT_FILE_PURPOSE,
    ) -> image_gateway.models.FileObject:
        """
        Store ``content`` under a freshly minted identifier.

        ``filename`` must already be reduced to a single path component
        (see ``field_codec.extract_upload_filename``).

        Raises:
            StorageError: if the directory cannot be created or the
                content cannot be written.
        """
        file_id = generate_file_identifier()
        file_directory = self._archives_directory / file_id

        is_directory_created = False
        try:
            self._archives_directory.mkdir(parents=True, exist_ok=True)
            # ``exist_ok`` is left False so an existing directory is never reused.
            file_directory.mkdir()
            is_directory_created = True
            (file_directory / filename).write_bytes(content)
        except (OSError, ValueError) as storage_error:
            # ValueError covers names the OS rejects outright, e.g. embedded NUL.
            if is_directory_created:
                shutil.rmtree(file_directory, ignore_errors=True)
            logger.error(
                "file_storage_failed",
                file_id=file_id,
                filename=filename,
                error=str(storage_error),
            )
            raise image_gateway.exceptions.StorageError(filename, storage_error) from storage_error

        file_object = image_gateway.models.FileObject(
            id=file_id,
            bytes=len(content),
            created_at=int(time.time()),
            filename=filename,
            purpose=purpose,
        )
        self._file_objects_by_id[file_id] = file_object

        logger.info(
            "file_stored",
            file_id=file_id,
            filename=filename,
            size_bytes=len(content),
        )
        return file_object

    def list(self) -> list[image_gateway.models.FileObject]:
        """Return every stored asset, ordered by creation time then id."""
        if not self._archives_directory.is_dir():
            return []

        file_objects = []
        for entry in self._archives_directory.iterdir():
            if not is_valid_file_identifier(entry.name):
                continue
            try:
                file_objects.append(self.retrieve_metadata(entry.name))
            except image_gateway.exceptions.FileObjectNotFoundError:
                # Deleted concurrently, or an empty directory left behind.
                continue

        return sorted(file_objects, key=lambda file_object: (file_object.created_at, file_object.id))

    def retrieve_metadata(self, file_id: str) -> image_gateway.models.FileObject:
        """
        Raises:
            FileObjectNotFoundError: if the id is unknown or malformed, or
                its backing file is missing.
        """
        stored_file_path = self._resolve_stored_file_path(file_id)

        indexed_file_object = self._file_objects_by_id.get(file_id)
        if indexed_file_object is not None:
            return indexed_file_object

        try:
            file_status = stored_file_path.stat()
        except OSError as stat_error:
            raise image_gateway.exceptions.FileObjectNotFoundError(file_id) from stat_error

        return image_gateway.models.FileObject(
            id=file_id,
            bytes=file_status.st_size,
            created_at=int(file_status.st_mtime),
            filename=stored_file_path.name,
        )

    def retrieve_content(self, file_id: str) -> bytes:
        """
        Raises:
            FileObjectNotFoundError: if the id is unknown or malformed, or
                its backing file is missing.
        """
        stored_file_path = self._resolve_stored_file_path(file_id)
        try:
            return stored_file_path.read_bytes()
        except OSError as read_error:
            raise image_gateway.exceptions.FileObjectNotFoundError(file_id) from read_error

    def download(self, file_id: str) -> DownloadedFile:
        """
        Resolve an asset for download, including its content type.

        Raises:
            FileObjectNotFoundError: as for ``retrieve_content``.
            UnsupportedExtensionError: if the filename extension is not
                on the download allow-list.
        """
        file_object = self.retrieve_metadata(file_id)
        content = self.retrieve_content(file_id)

        # A dotless name is its own extension: a file called "png" is served as image/png.
        extension = file_object.filename.rsplit(".", 1)[-1].lower()
        content_type = CONTENT_TYPES_BY_EXTENSION.get(extension)
        if content_type is None:
            logger.error(
                "file_download_rejected",
                file_id=file_id,
                extension=extension,
            )
            raise image_gateway.exceptions.UnsupportedExtensionError(extension)

        return DownloadedFile(
            filename=file_object.filename,
            content=content,
            content_type=content_type,
        )

    def delete(self, file_id: str) -> bool:
        """
        Remove an asset and its directory.

        Returns ``False`` instead of raising when nothing was deleted, so
        repeated deletes are harmless; the reason is logged.
        """
        if not is_valid_file_identifier(file_id):
            logger.warning("file_deletion_failed", file_id=file_id, reason="malformed file id")
            return False

        file_directory = self._archives_directory / file_id
        if not file_directory.is_dir():
            logger.warning("file_deletion_failed", file_id=file_id, reason="file not found")
            self._file_objects_by_id.pop(file_id, None)
            return False

        try:
            shutil.rmtree(file_directory)
        except OSError as deletion_error:
            logger.error("file_deletion_failed", file_id=file_id, reason=str(deletion_error))
            return False

        self._file_objects_by_id.pop(file_id, None)
        logger.info("file_deleted", file_id=file_id)
        return True

    def is_writable(self) -> bool:
        """Report whether new assets can currently be stored."""
        try:
            self._archives_directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self._archives_directory, os.W_OK)

    def _resolve_stored_file_path(self, file_id: str) -> pathlib.Path:
        if not is_valid_file_identifier(file_id):
            raise image_gateway.exceptions.FileObjectNotFoundError(file_id)

        file_directory = self._archives_directory / file_id

        indexed_file_object = self._file_objects_by_id.get(file_id)
        if indexed_file_object is not None:
            stored_file_path = file_directory / indexed_file_object.filename
            if stored_file_path.is_file():
                return stored_file_path
            raise image_gateway.exceptions.FileObjectNotFoundError(file_id)

        try:
            stored_files = sorted(entry for entry in file_directory.iterdir() if entry.is_file())
        except OSError as listing_error:
            raise image_gateway.exceptions.FileObjectNotFoundError(file_id) from listing_error

        if not stored_files:
            raise image_gateway.exceptions.FileObjectNotFoundError(file_id)
        return stored_files[0]
