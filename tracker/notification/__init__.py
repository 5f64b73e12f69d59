from .transport import Transport, DiscordTransport, Message, MessageRef

__all__ = ['Transport', 'DiscordTransport', 'Message', 'MessageRef']
