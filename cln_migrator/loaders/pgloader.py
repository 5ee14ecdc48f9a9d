"""
pgloader bulk loader.

Renders a pgloader command file for the SQLite source, runs pgloader
as a child process and tees its output to a transient log file. The
target password travels through a scoped PGPASSWORD in the child's
environment and never appears in the command file.
"""

import asyncio
import os
import shutil
import subprocess
import tempfile
import logging
import time
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional, TextIO

from cln_migrator.models.config import CastPolicy
from cln_migrator.security.credentials import scoped_pgpassword

from .base import Loader, LoadResult, LoadStatus, LoadTarget, OutputCallback
from .factory import register_loader

logger = logging.getLogger(__name__)

OUTPUT_TAIL_LINES = 40
MAX_TAIL_LINE_LENGTH = 1000
READ_CHUNK_SIZE = 64 * 1024


@register_loader('pgloader')
class PgloaderLoader(Loader):
    """
    Bulk loader backed by the pgloader executable.

    Tables are dropped and recreated in the target, indexes rebuilt and
    sequences reset, so a load is only ever run against a database the
    plan has decided to (re)populate.
    """

    LOAD_OPTIONS = [
        'include drop',
        'create tables',
        'create indexes',
        'reset sequences',
    ]

    def resolve_executable(self) -> Optional[str]:
        """Absolute path of the pgloader binary, None if not installed."""
        return shutil.which(self.config.executable or 'pgloader')

    def check_available(self) -> bool:
        return self.resolve_executable() is not None

    def version(self) -> Optional[str]:
        executable = self.resolve_executable()
        if executable is None:
            return None
        try:
            result = subprocess.run(
                [executable, '--version'],
                capture_output=True,
                text=True,
                timeout=30
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Could not query pgloader version: {e}")
            return None
        if result.returncode != 0:
            return None
        lines = result.stdout.strip().splitlines()
        return lines[0] if lines else None

    def render_command_file(
        self,
        source_path: Path,
        target: LoadTarget,
        cast_policy: CastPolicy,
        prefetch_rows: Optional[int] = None
    ) -> str:
        """Render the LOAD DATABASE command for the source and target."""
        prefetch = prefetch_rows or self.config.prefetch_rows
        options = ', '.join(self.LOAD_OPTIONS)
        lines: List[str] = [
            'LOAD DATABASE',
            f'    FROM sqlite://{Path(source_path).resolve()}',
            f'    INTO {target.uri()}',
            'WITH',
            f'    {options},',
            f'    prefetch rows = {prefetch}',
        ]

        casts = cast_policy.render()
        if casts:
            lines.append('')
            lines.append('CAST ' + ',\n     '.join(casts))
        lines.append(';')
        return '\n'.join(lines) + '\n'

    def _temp_dir(self) -> Optional[str]:
        if self.log_dir is None:
            return None
        Path(self.log_dir).mkdir(parents=True, exist_ok=True)
        return str(self.log_dir)

    def _write_command_file(self, content: str) -> Path:
        fd, path = tempfile.mkstemp(
            prefix='pgloader_', suffix='.load', dir=self._temp_dir()
        )
        with os.fdopen(fd, 'w') as handle:
            handle.write(content)
        return Path(path)

    def _create_log_file(self) -> Path:
        fd, path = tempfile.mkstemp(
            prefix='pgloader_output_', suffix='.log', dir=self._temp_dir()
        )
        os.close(fd)
        return Path(path)

    async def load(
        self,
        source_path: Path,
        target: LoadTarget,
        cast_policy: CastPolicy,
        password: Optional[str] = None,
        on_output: Optional[OutputCallback] = None
    ) -> LoadResult:
        executable = self.resolve_executable()
        if executable is None:
            return LoadResult(
                status=LoadStatus.FAILED,
                exit_status=127,
                command='pgloader',
                output_tail='pgloader executable not found'
            )

        command = executable
        command_file: Optional[Path] = None
        log_path: Optional[Path] = None
        tail: Deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        start_time = time.time()

        try:
            log_path = self._create_log_file()
            command_file = self._write_command_file(
                self.render_command_file(source_path, target, cast_policy)
            )
            command = f"{executable} {command_file}"
            logger.info(f"Running pgloader into {target.display_uri()}")

            with scoped_pgpassword(password) as env, open(log_path, 'w') as log:
                try:
                    process = await asyncio.create_subprocess_exec(
                        executable, str(command_file),
                        stdout=asyncio.subprocess.PIPE,
                        stderr=asyncio.subprocess.STDOUT,
                        env=env
                    )
                except OSError as e:
                    log.write(f"Could not start {executable}: {e}\n")
                    logger.error(f"Could not start pgloader: {e}")
                    return LoadResult(
                        status=LoadStatus.FAILED,
                        exit_status=126,
                        command=command,
                        log_path=str(log_path),
                        output_tail=str(e)
                    )

                try:
                    await self._tee_output(process.stdout, log, tail, on_output)
                    await process.wait()
                finally:
                    if process.returncode is None:
                        process.kill()
                        await process.wait()
        except Exception as e:
            logger.exception(f"pgloader run aborted: {e}")
            if log_path is not None:
                with open(log_path, 'a') as log:
                    log.write(f"pgloader run aborted: {e}\n")
            tail.append(f"pgloader run aborted: {e}")
            return LoadResult(
                status=LoadStatus.FAILED,
                exit_status=1,
                command=command,
                duration=time.time() - start_time,
                log_path=str(log_path) if log_path is not None else None,
                output_tail='\n'.join(tail)
            )
        finally:
            if command_file is not None:
                command_file.unlink(missing_ok=True)

        duration = time.time() - start_time

        if process.returncode == 0:
            log_path.unlink(missing_ok=True)
            logger.info(f"pgloader finished in {duration:.1f}s")
            return LoadResult(
                status=LoadStatus.COMPLETED,
                exit_status=0,
                command=command,
                duration=duration,
                output_tail='\n'.join(tail)
            )

        logger.error(
            f"pgloader failed with exit code {process.returncode}; log kept at {log_path}"
        )
        return LoadResult(
            status=LoadStatus.FAILED,
            exit_status=process.returncode,
            command=command,
            duration=duration,
            log_path=str(log_path),
            output_tail='\n'.join(tail)
        )

    async def _tee_output(
        self,
        stream: asyncio.StreamReader,
        log: TextIO,
        tail: Deque[str],
        on_output: Optional[OutputCallback]
    ) -> None:
        """Copy child output to the log, the tail and the callback, line by line."""
        pending = b''
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            *lines, pending = (pending + chunk).split(b'\n')
            for line in lines:
                self._emit(line, log, tail, on_output)
        if pending:
            self._emit(pending, log, tail, on_output)

    @staticmethod
    def _emit(
        raw: bytes,
        log: TextIO,
        tail: Deque[str],
        on_output: Optional[OutputCallback]
    ) -> None:
        line = raw.decode('utf-8', errors='replace').rstrip('\r')
        log.write(line + '\n')
        if len(line) > MAX_TAIL_LINE_LENGTH:
            line = line[:MAX_TAIL_LINE_LENGTH] + ' ...'
        tail.append(line)
        if on_output is not None:
            on_output(line)
