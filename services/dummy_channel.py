from services.channel_interface import CommandChannel, ConnectionState


class ConsoleCommandChannel(CommandChannel):
    """Prints commands instead of sending them. Used when Telegram is not configured."""

    async def connect(self) -> bool:
        self.state = ConnectionState.READY
        return True

    async def disconnect(self) -> None:
        self.state = ConnectionState.DISCONNECTED

    async def probe(self) -> None:
        pass

    async def send(self, text: str) -> bool:
        if not self.is_ready():
            return False
        print(f"[command] {text}")
        return True
