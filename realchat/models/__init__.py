from realchat.models.client_state import ClientStateEntry

__all__ = [
    "ClientStateEntry",
]
