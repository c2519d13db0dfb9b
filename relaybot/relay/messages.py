"""User- and operator-facing texts."""

WELCOME = "Hello! I'm your AI assistant. How can I help you today?"
START_FAILED = "Failed to create session. Please try again later."
TEXT_ONLY = "Sorry, I can only process text messages for now."
FORWARDED_TO_OPERATOR = (
    "Your message has been forwarded to a human operator. They will respond shortly."
)
NO_SESSION = "Please send /start to begin a session."
GENERIC_ERROR = "An error occurred. Please try again later."
EMPTY_REPLY = "I'm sorry, I couldn't process your request. Please try again."
ASSISTANT_ERROR = (
    "I'm sorry, I encountered an error processing your message. Please try again."
)
TEMPORARILY_UNAVAILABLE = "The service is temporarily unavailable. Please try again in a moment."

CONNECTED_TO_OPERATOR = "You are now connected to a human operator."
CONNECTED_TO_AI = "You are now connected to the AI assistant again."

HANDOFF_ENABLED = "Human handoff enabled for chat {chat_id}"
HANDOFF_ALREADY = "Chat {chat_id} is already in human handoff mode."
AI_REACTIVATED = "AI mode reactivated for chat {chat_id}"
AI_ALREADY = "Chat {chat_id} is already in AI mode."
CHAT_NOT_FOUND = "Chat {chat_id} does not exist."
ANSWER_SENT = "Message sent to {chat_id}"
ANSWER_REJECTED = (
    "Cannot send message. Either chat {chat_id} doesn't exist "
    "or it's not in human handoff mode."
)
ANSWER_FAILED = "Failed to deliver message to {chat_id}."
NO_ACTIVE_USERS = "No active users."
ACTIVE_USERS_HEADER = "Active users:"
STATUS_HANDOFF = "🔴 Human handoff"
STATUS_AI = "🟢 AI mode"
OPERATOR_HELP = (
    "To enable human handoff: /handoff [chatId]\n"
    "To return to AI mode: /ai [chatId]\n"
    "To answer a user: /answer [chatId] [message]"
)
HISTORY_EMPTY = "No conversation history found for chat {chat_id}."
HISTORY_HEADER = "Recent conversation for chat {chat_id}:"
OPERATOR_FORWARD = "Message from chat {chat_id}:\n{text}"
COMMAND_USAGE = "Usage: {usage}"

ROLE_LABELS = {
    "user": "👤 User",
    "assistant": "🤖 Bot",
    "system": "👨‍💼 Operator",
}
