"""Reads control metadata out of a .deb package file."""

import logging
from pathlib import Path

from debian.debfile import DebError, DebFile

from src.errors import IOFailure, MalformedMetadata

logger = logging.getLogger(__name__)


def read_control(deb_path: str | Path) -> dict[str, str]:
    """Return the control paragraph of a binary package, fields in file order.

    Args:
        deb_path: Path to the .deb file

    Returns:
        Mapping of control field name to value

    Raises:
        IOFailure: If the file cannot be opened
        MalformedMetadata: If the file is not a readable Debian package
    """
    path = Path(deb_path)
    if not path.is_file():
        raise IOFailure(f"Package file does not exist: {deb_path}")

    logger.info(f"Examining package file {path.name}")

    try:
        deb = DebFile(filename=str(path))
        try:
            control = deb.debcontrol()
        finally:
            deb.close()
    except DebError as e:
        raise MalformedMetadata(f"{path.name} is not a valid Debian package: {e}") from e
    except OSError as e:
        raise IOFailure(f"Failed to read {deb_path}: {e}") from e

    fields = dict(control.items())
    logger.debug(
        f"Control metadata of {path.name}: {fields.get('Package')} "
        f"{fields.get('Version')} {fields.get('Architecture')}"
    )
    return fields
