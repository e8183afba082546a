# -----------------------------------------------------------------------------
# BUILD CONTEXT ARCHIVES
# -----------------------------------------------------------------------------
# Packs an in-memory file set into a TAR stream the engine accepts as a
# build context (or as put_archive input).
# -----------------------------------------------------------------------------

import io
import tarfile
from collections.abc import Iterable, Mapping

from mqharness.domain.models import BuildFile

# Build context files are private to the image build
FILE_MODE = 0o600

FileSet = Mapping[str, str] | Iterable[BuildFile]


def as_build_files(files: FileSet) -> list[BuildFile]:
    """Normalise a name -> body mapping or an iterable of BuildFile."""
    if isinstance(files, Mapping):
        return [BuildFile(name=name, body=body) for name, body in files.items()]
    return list(files)


def generate_tar(files: FileSet) -> bytes:
    """Create a TAR-formatted byte string with the given files included."""
    tar_buffer = io.BytesIO()

    with tarfile.open(fileobj=tar_buffer, mode="w") as tar:
        for build_file in as_build_files(files):
            content = build_file.body.encode("utf-8")
            info = tarfile.TarInfo(name=build_file.name)
            info.size = len(content)
            info.mode = FILE_MODE
            tar.addfile(info, io.BytesIO(content))

    tar_buffer.seek(0)
    return tar_buffer.read()
