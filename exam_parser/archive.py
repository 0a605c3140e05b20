"""
Archive Reader
==============
Opens the .docx container (a zip of XML parts plus media) and resolves
embedded images through the relationship manifest.

    DocxArchive   → named parts as bytes/text, media entries
    extract_media → MediaCatalog (ImageAssets + rId → filename map)
"""

from __future__ import annotations

import io
import logging
import warnings
import zipfile
import zlib
from pathlib import PurePosixPath
from typing import Iterator, Optional

from lxml import etree

from .exceptions import ArchiveError, MediaExtractionWarning, MissingPartError
from .models import ImageAsset

logger = logging.getLogger(__name__)

DOCUMENT_PART = "word/document.xml"
RELATIONSHIPS_PART = "word/_rels/document.xml.rels"
MEDIA_PREFIX = "word/media/"

REL_NS = "{http://schemas.openxmlformats.org/package/2006/relationships}"

# zipfile raises NotImplementedError for unsupported compression methods
# and RuntimeError for encrypted entries
READ_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    NotImplementedError,
    RuntimeError,
)

CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "svg": "image/svg+xml",
}
DEFAULT_CONTENT_TYPE = CONTENT_TYPES["png"]


def content_type_for(filename: str) -> str:
    """Content type from the file extension; unknown extensions are png."""
    ext = PurePosixPath(filename).suffix.lstrip(".").lower()
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


def _media_warning(message: str):
    logger.warning(message)
    warnings.warn(message, MediaExtractionWarning, stacklevel=3)


class DocxArchive:
    """
    Read-only handle over the document container.
    """

    def __init__(self, zf: zipfile.ZipFile):
        self._zf = zf

    @classmethod
    def from_bytes(cls, data: bytes) -> "DocxArchive":
        """
        Open a container from raw bytes.

        Raises:
            ArchiveError: If the bytes are empty or not a zip container.
        """
        if not data:
            raise ArchiveError("Document is empty")
        try:
            zf = zipfile.ZipFile(io.BytesIO(data))
        except (zipfile.BadZipFile, zlib.error, ValueError) as e:
            raise ArchiveError(f"Cannot open document container: {e}") from e
        return cls(zf)

    def close(self):
        self._zf.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def names(self) -> list[str]:
        return self._zf.namelist()

    def has_part(self, name: str) -> bool:
        try:
            self._zf.getinfo(name)
        except KeyError:
            return False
        return True

    def read_bytes(self, name: str) -> bytes:
        """
        Read a named part.

        Raises:
            MissingPartError: If the part does not exist.
            ArchiveError: If the entry is corrupt.
        """
        if not self.has_part(name):
            raise MissingPartError(name)
        try:
            return self._zf.read(name)
        except READ_ERRORS as e:
            raise ArchiveError(f"Cannot read part {name}: {e}") from e

    def read_text(self, name: str) -> str:
        return self.read_bytes(name).decode("utf-8", errors="replace")

    def main_document(self) -> bytes:
        """Raw XML of the main document part."""
        return self.read_bytes(DOCUMENT_PART)

    def iter_media(self, prefix: str = MEDIA_PREFIX) -> Iterator[tuple[str, bytes]]:
        """
        Yield (entry name, payload) for every file under `prefix`.
        Unreadable entries are skipped with a MediaExtractionWarning.
        """
        for info in self._zf.infolist():
            if info.is_dir() or not info.filename.startswith(prefix):
                continue
            try:
                payload = self._zf.read(info.filename)
            except READ_ERRORS as e:
                _media_warning(f"Skipping unreadable media entry {info.filename}: {e}")
                continue
            yield info.filename, payload


# ─── Media Resolution ─────────────────────────────────────────────────────────


class MediaCatalog:
    """
    Images extracted from the container plus the relationship map
    used to resolve image references found in paragraphs.
    """

    def __init__(
        self,
        assets: Optional[list[ImageAsset]] = None,
        relationships: Optional[dict[str, str]] = None,
    ):
        self.assets: list[ImageAsset] = list(assets or [])
        self.relationships: dict[str, str] = dict(relationships or {})

    def __len__(self) -> int:
        return len(self.assets)

    def resolve(self, rid: str) -> Optional[ImageAsset]:
        """
        Find the asset behind a relationship id.

        Order: asset relationship id, manifest target filename,
        then a filename-inside-id substring match (some embed forms
        carry scrambled or missing ids).
        """
        if not rid:
            return None

        for asset in self.assets:
            if asset.relationship_id == rid:
                return asset

        target = self.relationships.get(rid)
        if target:
            for asset in self.assets:
                if asset.filename == target:
                    return asset

        for asset in self.assets:
            if asset.filename and asset.filename in rid:
                return asset

        return None


def parse_relationships(xml: bytes) -> dict[str, str]:
    """
    Map relationship ids to media filenames.

    Only internal targets under `media/` are kept.

    Raises:
        etree.XMLSyntaxError: If the manifest is not well-formed.
    """
    root = etree.fromstring(xml)
    rel_map: dict[str, str] = {}
    for rel in root.iter(f"{REL_NS}Relationship"):
        rid = rel.get("Id")
        target = rel.get("Target", "")
        if not rid or rel.get("TargetMode") == "External":
            continue
        if "media/" in target:
            rel_map[rid] = target.rsplit("/", 1)[-1]
    return rel_map


def extract_media(archive: DocxArchive) -> MediaCatalog:
    """
    Extract every embedded media entry as an ImageAsset.

    A missing or malformed relationship manifest is not fatal: the assets
    are still returned, without relationship ids.
    """
    rel_map: dict[str, str] = {}
    if archive.has_part(RELATIONSHIPS_PART):
        try:
            rel_map = parse_relationships(archive.read_bytes(RELATIONSHIPS_PART))
        except (etree.XMLSyntaxError, ArchiveError) as e:
            _media_warning(f"Relationship manifest unreadable, images left unlinked: {e}")
    else:
        logger.debug("No relationship manifest in document")

    # First rId wins when several point at the same file
    rid_by_filename: dict[str, str] = {}
    for rid, filename in rel_map.items():
        rid_by_filename.setdefault(filename, rid)

    assets: list[ImageAsset] = []
    for name, payload in archive.iter_media():
        filename = name.rsplit("/", 1)[-1]
        assets.append(ImageAsset(
            id=f"img_{len(assets)}",
            filename=filename,
            payload=payload,
            content_type=content_type_for(filename),
            relationship_id=rid_by_filename.get(filename, ""),
        ))

    logger.info(f"Extracted {len(assets)} media entries")
    return MediaCatalog(assets, rel_map)
