# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
File helpers shared by the secret store and the fragment installers.
"""
import hashlib
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


def checksum(content: Union[str, bytes]) -> str:
    """SHA-256 hex digest of a string or bytes."""
    if isinstance(content, str):
        content = content.encode('utf-8')
    return hashlib.sha256(content).hexdigest()


def file_checksum(path: PathLike) -> Optional[str]:
    """SHA-256 hex digest of a file, or None if the file does not exist."""
    digest = hashlib.sha256()
    try:
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(65536), b''):
                digest.update(chunk)
    except FileNotFoundError:
        return None
    return digest.hexdigest()


def atomic_write(path: PathLike, content: Union[str, bytes], mode: int = 0o644) -> None:
    """
    Writes ``content`` to ``path`` so that readers see either the old file or
    the complete new one.

    The data goes to a temporary file in the same directory, which is chmod-ed,
    fsync-ed and renamed over the target.

    Args:
        path: Destination file.
        content: Text (written as UTF-8) or bytes.
        mode: Permission bits of the resulting file.
    """
    path = Path(path)
    data = content.encode('utf-8') if isinstance(content, str) else content
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
