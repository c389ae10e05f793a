"""
ZIP Archive Extraction

Unpacks the CSV members of a delivery archive into a working directory.
"""

import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Union

logger = logging.getLogger(__name__)


def extract_csv_members(archive_path: Union[str, Path], target_dir: Union[str, Path]) -> List[Path]:
    """
    Extract every .csv member of an archive, flattened into target_dir.

    Members are written under their base name only, so entries such as
    "../x.csv" cannot escape the target directory.

    Args:
        archive_path: ZIP file
        target_dir: Existing directory to write into

    Returns:
        Extracted file paths in archive member order

    Raises:
        zipfile.BadZipFile: If the archive is corrupt
        OSError: If a member cannot be written
    """
    archive_path = Path(archive_path)
    target_dir = Path(target_dir)
    extracted: List[Path] = []

    with zipfile.ZipFile(archive_path) as zf:
        members = [
            info for info in zf.infolist()
            if not info.is_dir() and info.filename.lower().endswith(".csv")
        ]
        if not members:
            logger.warning(f"No CSV files in archive {archive_path.name}")

        for info in members:
            name = PurePosixPath(info.filename.replace("\\", "/")).name
            if not name:
                continue
            destination = target_dir / name
            if destination in extracted:
                logger.warning(f"{archive_path.name}: duplicate member name {name} overwrites earlier entry")
                extracted.remove(destination)
            with zf.open(info) as src, open(destination, "wb") as dst:
                shutil.copyfileobj(src, dst)
            extracted.append(destination)

    logger.info(f"Extracted {len(extracted)} CSV files from {archive_path.name}")
    return extracted
