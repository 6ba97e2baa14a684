"""
自动回复模块 - 按正则触发词自动回复普通消息。

每条规则包含 trigger（正则，大小写不敏感）、response（回复文本）、
probability（命中后实际回复的概率，0~1）。
每条消息最多回复一次：按规则顺序匹配，第一条命中且通过概率判定的规则生效。

配置示例（modules.settings.auto_responder）：
    {"responses": [{"trigger": "hello|hi", "response": "Hello!", "probability": 1.0}]}

二开提示：
- 通过 .addresponse 运行时添加的规则只保存在内存中，重载模块后丢失
"""

import random
import re
from dataclasses import dataclass
from typing import Any, Callable

from directbot.bus.events import Message
from directbot.modules.base import BotModule

# addresponse 添加的规则使用的默认概率
DEFAULT_PROBABILITY = 0.8

DEFAULT_RESPONSES: list[dict[str, Any]] = [
    {"trigger": "hello|hi|hey", "response": "Hello! 👋 How can I help you?", "probability": 0.8},
    {"trigger": "how are you", "response": "I'm doing great! Thanks for asking. 😊", "probability": 0.9},
    {"trigger": "thank you|thanks", "response": "You're welcome! 😊", "probability": 0.7},
]


@dataclass
class AutoResponse:
    """一条自动回复规则。"""
    trigger: re.Pattern
    response: str
    probability: float = DEFAULT_PROBABILITY

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AutoResponse":
        return cls(
            trigger=re.compile(data["trigger"], re.IGNORECASE),
            response=data["response"],
            probability=float(data.get("probability", DEFAULT_PROBABILITY)),
        )


class AutoResponderModule(BotModule):
    """自动回复。"""

    name = "AutoResponder"
    description = "Automatic message responses"

    def __init__(self, context, config=None, rng: Callable[[], float] = random.random):
        super().__init__(context, config)
        self._rng = rng
        raw = self.config.get("responses", DEFAULT_RESPONSES)
        self.responses: list[AutoResponse] = [AutoResponse.from_dict(r) for r in raw]

        self.register_command("addresponse", self.add_response_command,
                              description="Add an auto-response",
                              usage="addresponse <trigger> | <response>", admin_only=True)
        self.register_command("listresponses", self.list_responses_command,
                              description="List all auto-responses",
                              usage="listresponses", admin_only=True)

    async def on_message(self, message: Message) -> None:
        if not message.has_text or message.text.startswith(self.context.prefix):
            return

        for rule in self.responses:
            if rule.trigger.search(message.text) and self._rng() < rule.probability:
                await self.send_message(message.thread_id, rule.response)
                self.log("info", f"Auto-responded to message from @{message.sender_name}")
                break

    async def add_response_command(self, message: Message, args: list[str]) -> None:
        parts = [part.strip() for part in " ".join(args).split("|")]
        if len(parts) != 2 or not all(parts):
            await self.send_message(message.thread_id, "❓ Usage: addresponse <trigger> | <response>")
            return

        trigger, response = parts
        try:
            pattern = re.compile(trigger, re.IGNORECASE)
        except re.error:
            await self.send_message(message.thread_id, "❌ Invalid regex pattern.")
            return

        self.responses.append(AutoResponse(pattern, response))
        await self.send_message(message.thread_id, "✅ Auto-response added successfully!")
        self.log("info", f"Added auto-response: {trigger} -> {response}")

    async def list_responses_command(self, message: Message, args: list[str]) -> None:
        if not self.responses:
            await self.send_message(message.thread_id, "📝 No auto-responses configured.")
            return

        lines = [
            f'{i}. **{rule.trigger.pattern}** → "{rule.response}" ({round(rule.probability * 100)}%)'
            for i, rule in enumerate(self.responses, 1)
        ]
        await self.send_message(
            message.thread_id,
            f"📝 **Auto-Responses ({len(self.responses)})**\n\n" + "\n".join(lines),
        )
