"""FTP / explicit FTPS transfer session built on aioftp."""

import asyncio
import ssl
from contextlib import asynccontextmanager
from typing import BinaryIO, List, Optional

import aioftp

from .base import BaseTransferSession, ProtocolError, RemoteEntry, TransferStopped
from .timestamps import format_modify_time, parse_modify_time


class FTPSession(BaseTransferSession):
    """Transfer session over a single FTP control connection."""

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        secure: bool = True,
        port: int = 21,
        verify_tls: bool = False,
        socket_timeout: Optional[float] = 60.0,
        block_size: int = 64 * 1024,
    ):
        super().__init__(host, username, password, secure)
        self.port = port
        self.verify_tls = verify_tls
        self.socket_timeout = socket_timeout
        self.block_size = block_size
        self._client: Optional[aioftp.Client] = None
        self._stopped = False

    @classmethod
    def from_settings(cls, ftp_settings) -> "FTPSession":
        return cls(
            host=ftp_settings.host,
            username=ftp_settings.username,
            password=ftp_settings.password,
            secure=ftp_settings.secure,
            port=ftp_settings.port,
            verify_tls=ftp_settings.verify_tls,
            socket_timeout=ftp_settings.socket_timeout,
            block_size=ftp_settings.block_size,
        )

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def connect(self) -> None:
        self._stopped = False
        client = aioftp.Client(socket_timeout=self.socket_timeout, encoding="utf-8")
        async with self._guard():
            await client.connect(self.host, self.port)
            if self.secure:
                await client.upgrade_to_tls(self._ssl_context())
            await client.login(self.username, self.password)
        self._client = client
        self.logger.info(
            "Connected to FTP server",
            host=self.host,
            port=self.port,
            secure=self.secure,
            username=self.username
        )

    def disconnect(self) -> None:
        if self._client is None:
            return
        self._stopped = True
        try:
            self._client.close()
        except OSError as e:
            self.logger.debug("Error while closing FTP connection", error=str(e))
        self._client = None
        self.logger.info("Disconnected from FTP server", host=self.host)

    def _require_client(self) -> aioftp.Client:
        if self._client is None:
            if self._stopped:
                raise TransferStopped()
            raise ConnectionAbortedError("FTP session is not connected")
        return self._client

    @asynccontextmanager
    async def _guard(self):
        """Translate aioftp failures into session errors."""
        try:
            yield
        except aioftp.StatusCodeError as e:
            if self._stopped:
                raise TransferStopped() from e
            codes = [int(code) for code in e.received_codes if str(code).isdigit()]
            raise ProtocolError(codes[-1] if codes else 0, " ".join(str(line).strip() for line in e.info)) from e
        except asyncio.IncompleteReadError as e:
            if self._stopped:
                raise TransferStopped() from e
            raise ConnectionResetError("Connection closed by server") from e
        except ConnectionError as e:
            if self._stopped:
                raise TransferStopped() from e
            raise

    async def _command(self, command: str, expected: str = "2xx") -> str:
        client = self._require_client()
        async with self._guard():
            _, info = await client.command(command, expected)
        return " ".join(str(line).strip() for line in info).strip()

    async def change_dir(self, path: str) -> None:
        client = self._require_client()
        async with self._guard():
            await client.change_directory(path)

    async def make_dir(self, name: str) -> None:
        client = self._require_client()
        try:
            async with self._guard():
                await client.make_directory(name, parents=False)
        except ProtocolError as e:
            # 550/521: directory already exists
            self.logger.debug("Ignoring MKD failure", directory=name, code=e.code)

    async def list(self, path: str) -> List[RemoteEntry]:
        client = self._require_client()
        async with self._guard():
            items = await client.list(path)
        entries = []
        for item_path, info in items:
            entries.append(RemoteEntry(
                name=item_path.name,
                type=info.get("type", ""),
                size=int(info["size"]) if str(info.get("size", "")).isdigit() else None
            ))
        self._notify_progress(path, "list", 0, 0)
        return entries

    async def upload_from(self, local_path: str, remote_path: str) -> None:
        loop = asyncio.get_running_loop()
        source = await loop.run_in_executor(None, open, local_path, "rb")
        try:
            await self._stream_into(source, remote_path, append=False)
        finally:
            source.close()

    async def append_from(self, source: BinaryIO, remote_path: str) -> None:
        await self._stream_into(source, remote_path, append=True)

    async def _stream_into(self, source: BinaryIO, remote_path: str, append: bool) -> None:
        client = self._require_client()
        loop = asyncio.get_running_loop()
        kind = "append" if append else "upload"
        transferred = 0
        open_stream = client.append_stream if append else client.upload_stream
        async with self._guard():
            async with open_stream(remote_path) as stream:
                while True:
                    block = await loop.run_in_executor(None, source.read, self.block_size)
                    if not block:
                        break
                    await stream.write(block)
                    transferred += len(block)
                    self._notify_progress(remote_path, kind, transferred, len(block))

    async def remove(self, remote_path: str) -> None:
        client = self._require_client()
        async with self._guard():
            await client.remove_file(remote_path)

    async def remove_dir(self, remote_path: str) -> None:
        client = self._require_client()
        async with self._guard():
            await client.remove_directory(remote_path)

    async def size(self, remote_path: str) -> int:
        reply = await self._command(f"SIZE {remote_path}", "213")
        return int(reply.split()[-1])

    async def get_modify_time(self, remote_path: str) -> int:
        reply = await self._command(f"MDTM {remote_path}", "213")
        return parse_modify_time(reply.split()[-1])

    async def set_modify_time(self, remote_path: str, mtime_ms: float) -> None:
        await self._command(f"MFMT {format_modify_time(mtime_ms)} {remote_path}")
