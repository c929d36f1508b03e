"""Reply generation backends."""

from .generator import AnthropicReplyGenerator, ReplyGenerator, build_messages

__all__ = ["AnthropicReplyGenerator", "ReplyGenerator", "build_messages"]
