from .account import Account, AuthSession
from .diary import Diary, RowId
from .entry import Entry, EntryPreview

__all__ = [
    "Account",
    "AuthSession",
    "Diary",
    "Entry",
    "EntryPreview",
    "RowId",
]
