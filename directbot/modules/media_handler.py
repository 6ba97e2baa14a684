"""
媒体处理模块 - 记录收到的媒体消息，并提供发图命令。

命令：
    sendphoto <url_or_file> [caption]   从 URL 下载或从 mediaPath 目录读取图片并发送
    meme                                从 memeApiUrl 随机取一张梗图发送

配置：
    mediaPath    本地图片目录（默认 ./media）
    memeApiUrl   梗图 API（返回 {"url", "title", "subreddit"} 的 JSON）
    timeout      HTTP 超时秒数
"""

from pathlib import Path

import httpx

from directbot.bus.events import ContentKind, Message
from directbot.modules.base import BotModule
from directbot.utils.helpers import ensure_dir

DEFAULT_MEME_API = "https://meme-api.com/gimme"


class MediaHandlerModule(BotModule):
    """媒体消息处理。"""

    name = "MediaHandler"
    description = "Handle media messages and commands"

    def __init__(self, context, config=None):
        super().__init__(context, config)
        self.media_path = Path(self.config.get("mediaPath", "./media")).expanduser()
        self.meme_api_url = self.config.get("memeApiUrl", DEFAULT_MEME_API)
        self.timeout = float(self.config.get("timeout", 30.0))

        self.register_command("sendphoto", self.send_photo_command,
                              description="Send a photo from URL or file",
                              usage="sendphoto <url_or_filename> [caption]")
        self.register_command("meme", self.meme_command,
                              description="Send a random meme", usage="meme")

    async def initialize(self) -> None:
        ensure_dir(self.media_path)

    async def on_message(self, message: Message) -> None:
        if message.kind is ContentKind.MEDIA:
            self.log("info", f"Received media message from @{message.sender_name}")

    async def send_photo_command(self, message: Message, args: list[str]) -> None:
        if not args:
            await self.send_message(message.thread_id, "❓ Please provide a URL or filename.")
            return

        source, caption = args[0], " ".join(args[1:])
        try:
            if source.startswith(("http://", "https://")):
                photo = await self._download(source)
            else:
                path = self._resolve_media_file(source)
                if path is None:
                    await self.send_message(message.thread_id, "❌ File not found.")
                    return
                photo = path.read_bytes()

            await self.send_photo(message.thread_id, photo, caption)
            self.log("info", f"Sent photo to thread {message.thread_id}")
        except (httpx.HTTPError, OSError) as e:
            self.log("error", f"Failed to send photo: {e}")
            await self.send_message(message.thread_id, "❌ Failed to send photo.")

    async def meme_command(self, message: Message, args: list[str]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.meme_api_url)
                response.raise_for_status()
                data = response.json()
                url = data.get("url")
                if not url:
                    await self.send_message(message.thread_id, "❌ Failed to fetch meme.")
                    return
                image = await client.get(url)
                image.raise_for_status()

            caption = f"{data.get('title', '')}\n\n📱 r/{data.get('subreddit', '?')}"
            await self.send_photo(message.thread_id, image.content, caption)
            self.log("info", f"Sent meme to thread {message.thread_id}")
        except (httpx.HTTPError, ValueError) as e:
            self.log("error", f"Failed to fetch meme: {e}")
            await self.send_message(message.thread_id, "❌ Failed to fetch meme.")

    async def _download(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content

    def _resolve_media_file(self, name: str) -> Path | None:
        """只允许读取 mediaPath 目录内的文件。"""
        root = self.media_path.resolve()
        path = (root / name).resolve()
        if root not in path.parents or not path.is_file():
            return None
        return path
