"""
Function packaging: content-addressed deployment archives.

A function node consumes a package path plus its hash; the hash is what
the planner compares, so a redeploy happens exactly when the bytes change.
"""

import base64
import hashlib
import zipfile
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

# Fixed timestamp so identical sources produce identical archives
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def source_code_hash(path: str | Path) -> str:
    """Base64-encoded sha256 of a package's bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return base64.b64encode(digest.digest()).decode("ascii")


def build_package(source_dir: str | Path, output: str | Path) -> Path:
    """
    Zip a handler source directory deterministically.

    Entries are sorted and carry a fixed timestamp, so the archive hash
    only depends on file names and contents.

    Args:
        source_dir: Directory containing the handler code
        output: Path of the archive to write

    Returns:
        Path to the written archive
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise FileNotFoundError(f"Package source directory not found: {source}")

    archive = Path(output)
    archive.parent.mkdir(parents=True, exist_ok=True)

    files = sorted(p for p in source.rglob("*") if p.is_file() and "__pycache__" not in p.parts)
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for file in files:
            info = zipfile.ZipInfo(file.relative_to(source).as_posix(), date_time=_ZIP_EPOCH)
            info.external_attr = 0o644 << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, file.read_bytes())

    logger.debug("package_built", source=str(source), archive=str(archive), files=len(files))
    return archive


@dataclass(frozen=True)
class FunctionPackage:
    """
    A deployment package and the handler entry point inside it.

    Example:
        package = FunctionPackage("build/subscribers.zip", "handler.lambda_handler")
        package.source_code_hash  # "k2Yy...="
    """

    path: str
    handler: str
    runtime: str = "python3.11"
    hash_override: str | None = None
    """Use this hash instead of reading `path` (for packages built elsewhere)"""

    @property
    def source_code_hash(self) -> str:
        if self.hash_override is not None:
            return self.hash_override
        return source_code_hash(self.path)
