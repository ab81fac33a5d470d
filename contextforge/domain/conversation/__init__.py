from .conversation_controller import ConversationController, MessageSink

__all__ = ["ConversationController", "MessageSink"]
