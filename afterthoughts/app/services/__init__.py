from .supabase import SupabaseClient
from .session_gate import SessionGate
from .diary_directory import DiaryDirectory
from .diary_management import DiaryManager
from .entry_editor import EntryEditor
from .voice_dictation import VoiceDictationAdapter
from .auth_forms import AuthForms
from .idle_timeout import IdleSessionTimeout
from .theme import ThemeContext
from .client_state import ClientState, registry

__all__ = [
    "SupabaseClient",
    "SessionGate",
    "DiaryDirectory",
    "DiaryManager",
    "EntryEditor",
    "VoiceDictationAdapter",
    "AuthForms",
    "IdleSessionTimeout",
    "ThemeContext",
    "ClientState",
    "registry",
]
