"""
Token Storage for the Market Appliance client.

This module owns the on-disk copy of the appliance token pair. The file is
read once when the storage is opened and rewritten atomically on every update
so a concurrent reader never observes a partially written file.
"""

import os
import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union

from shared.exceptions import TokenStorageError, TokenParseError, ErrorCode
from shared.interfaces import ITokenStorage
from shared.models import TokenPair

logger = logging.getLogger(__name__)

TOKEN_FILE = "sealing_market_tokens.json"


class TokenStorage(ITokenStorage):
    """
    File backed storage for a single token pair.

    There is no token history: each persist replaces the previous pair.
    """

    def __init__(self, token_path: Path, tokens: Optional[TokenPair] = None):
        self._path = token_path
        self._tokens = tokens or TokenPair()
        self._lock = threading.Lock()

    @classmethod
    def open(cls, working_dir: Union[str, Path]) -> "TokenStorage":
        """
        Open the token file inside an existing working directory.

        The directory is never created. The token file is created empty when
        missing; a non-empty file is parsed into the current pair.

        Args:
            working_dir: Worker repository directory, "~" is expanded

        Returns:
            Opened token storage

        Raises:
            TokenStorageError: If the directory is missing or the file can't be opened
            TokenParseError: If the file content is malformed
        """
        directory = Path(working_dir).expanduser()
        if not directory.is_dir():
            raise TokenStorageError(
                f"working directory does not exist: {directory}",
                ErrorCode.STORAGE_DIRECTORY_MISSING,
                path=str(directory)
            )

        token_path = directory / TOKEN_FILE
        try:
            fd = os.open(token_path, os.O_RDWR | os.O_CREAT, 0o600)
            with os.fdopen(fd, 'rb') as f:
                content = f.read()
        except OSError as e:
            raise TokenStorageError(
                f"open tokens file: {e}",
                ErrorCode.STORAGE_OPEN_FAILED,
                path=str(token_path),
                cause=e
            )

        tokens = None
        if content:
            tokens = cls._parse(content)
            logger.info(f"Loaded tokens from {token_path} (expire at {tokens.expires_at.isoformat()})")
        else:
            logger.info(f"Token file {token_path} is empty, appliance is not registered yet")

        return cls(token_path, tokens)

    @staticmethod
    def _parse(content: bytes) -> TokenPair:
        try:
            data = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TokenParseError(f"unmarshal tokens: {e}", ErrorCode.PARSE_INVALID_JSON, cause=e)
        return TokenPair.from_dict(data)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> TokenPair:
        """Return the last parsed or persisted pair, or the zero pair."""
        with self._lock:
            return self._tokens

    def persist(self, tokens: TokenPair) -> None:
        """
        Replace the token file with the given pair.

        Writes a temporary file next to the token file and renames it into
        place, so the old content stays intact if anything fails.

        Raises:
            TokenStorageError: On any write failure, including a short write
        """
        data = json.dumps(tokens.to_dict()).encode('utf-8')

        with self._lock:
            tmp_path = None
            try:
                fd, tmp_path = tempfile.mkstemp(
                    prefix=f".{TOKEN_FILE}.", suffix=".tmp", dir=self._path.parent
                )
                with os.fdopen(fd, 'wb') as f:
                    written = f.write(data)
                    if written < len(data):
                        raise TokenStorageError(
                            "short write tokens",
                            ErrorCode.STORAGE_SHORT_WRITE,
                            path=str(self._path),
                            context={'written': written, 'expected': len(data)}
                        )
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, self._path)
                tmp_path = None
            except OSError as e:
                raise TokenStorageError(
                    f"write tokens: {e}",
                    ErrorCode.STORAGE_WRITE_FAILED,
                    path=str(self._path),
                    cause=e
                )
            finally:
                if tmp_path is not None and os.path.exists(tmp_path):
                    os.unlink(tmp_path)

            self._tokens = tokens

        logger.debug(f"Tokens persisted to {self._path}")
