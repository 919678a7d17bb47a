"""
Exception types raised at the I/O boundaries (snapshot fetch, generation, channel)
"""


class QuestlineError(Exception):
    """Base exception for the progression system"""
    pass


class SnapshotUnavailableError(QuestlineError):
    """Raised when the activity snapshot for a user cannot be fetched"""
    def __init__(self, user_id: str, details: str = ""):
        self.user_id = user_id
        self.details = details
        super().__init__(f"Activity snapshot for {user_id} unavailable: {details}")


class GenerationError(QuestlineError):
    """Raised when an on-demand quest generation fails"""
    def __init__(self, category: str, details: str):
        self.category = category
        self.details = details
        super().__init__(f"Quest generation for '{category}' failed: {details}")


class InvalidQuestError(QuestlineError):
    """Raised when an externally produced quest record has the wrong shape"""
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid quest record, {field}: {message}")


class UnknownCategoryError(QuestlineError):
    """Raised for a request token or trigger point that is not recognised"""
    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Unknown quest category or trigger: {token}")


class ChannelNotConnectedError(QuestlineError):
    """Raised when the delivery channel is used while disconnected"""
    def __init__(self, channel: str = "authed"):
        self.channel = channel
        super().__init__(f"Channel '{channel}' is not connected")
