"""SQLAlchemy models — re-export all."""

from models.user import User  # noqa: F401
from models.listing import Listing  # noqa: F401
from models.conversation import Conversation, ConversationParticipant  # noqa: F401
from models.message import Message, MessageEdit  # noqa: F401
