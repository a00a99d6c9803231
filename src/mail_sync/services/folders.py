"""Folder canonicalization for provider labels.

Providers report folders as Gmail system labels (``SENT``, ``[Gmail]/Trash``),
Microsoft display names (``Sent Items``, ``Gelöschte Elemente``) or IMAP
paths (``INBOX.Sent``). Every label is mapped to a lowercase canonical name
and one folder is chosen per message.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_FOLDER = "inbox"

# Highest priority first
FOLDER_PRIORITY: tuple[str, ...] = ("trash", "spam", "drafts", "sent", "inbox", "archive")

# Canonical names that describe a flag or a view rather than a location
NON_LOCATION_FOLDERS = frozenset({"important", "starred", "all", "custom", "unread"})

_GMAIL_CATEGORIES = {
    "personal": "inbox",
    "social": "social",
    "promotions": "promotions",
    "updates": "updates",
    "forums": "forums",
}

_GMAIL_LABELS = {
    "unread": "inbox",
    "important": "important",
    "starred": "starred",
    "[gmail]/all mail": "all",
    "[gmail]/toda a correspondência": "all",
    "[gmail]/wszystkie": "all",
    "[gmail]/tous les messages": "all",
    "[gmail]/alle nachrichten": "all",
    "[gmail]/sent mail": "sent",
    "[gmail]/sent": "sent",
    "[gmail]/enviados": "sent",
    "[gmail]/e-mails enviados": "sent",
    "[gmail]/gesendete nachrichten": "sent",
    "[gmail]/messages envoyés": "sent",
    "[gmail]/wysłane": "sent",
    "[gmail]/skickat": "sent",
    "[gmail]/verzonden": "sent",
    "[gmail]/inviati": "sent",
    "[gmail]/drafts": "drafts",
    "[gmail]/rascunhos": "drafts",
    "[gmail]/borradores": "drafts",
    "[gmail]/entwürfe": "drafts",
    "[gmail]/brouillons": "drafts",
    "[gmail]/wersje robocze": "drafts",
    "[gmail]/concepten": "drafts",
    "[gmail]/bozze": "drafts",
    "[gmail]/trash": "trash",
    "[gmail]/bin": "trash",
    "[gmail]/lixeira": "trash",
    "[gmail]/papelera": "trash",
    "[gmail]/papierkorb": "trash",
    "[gmail]/corbeille": "trash",
    "[gmail]/kosz": "trash",
    "[gmail]/prullenbak": "trash",
    "[gmail]/cestino": "trash",
    "[gmail]/spam": "spam",
    "[gmail]/lixo eletrônico": "spam",
    "[gmail]/correo no deseado": "spam",
    "[gmail]/courrier indésirable": "spam",
    "[gmail]/posta indesiderata": "spam",
    "[gmail]/important": "important",
    "[gmail]/importante": "important",
    "[gmail]/wichtig": "important",
    "[gmail]/starred": "starred",
    "[gmail]/com estrela": "starred",
    "[gmail]/destacados": "starred",
    "[gmail]/mit stern": "starred",
    "[gmail]/suivis": "starred",
}

_MICROSOFT_FOLDERS = {
    "sent items": "sent",
    "sent mail": "sent",
    "sent messages": "sent",
    "gesendete elemente": "sent",
    "éléments envoyés": "sent",
    "elementi inviati": "sent",
    "itens enviados": "sent",
    "elementos enviados": "sent",
    "verzonden items": "sent",
    "wysłane": "sent",
    "drafts": "drafts",
    "entwürfe": "drafts",
    "brouillons": "drafts",
    "bozze": "drafts",
    "rascunhos": "drafts",
    "borradores": "drafts",
    "concepten": "drafts",
    "deleted items": "trash",
    "deleted messages": "trash",
    "trash": "trash",
    "gelöschte elemente": "trash",
    "éléments supprimés": "trash",
    "elementi eliminati": "trash",
    "itens excluídos": "trash",
    "elementos eliminados": "trash",
    "verwijderde items": "trash",
    "junk email": "spam",
    "junk e-mail": "spam",
    "junk": "spam",
    "spam": "spam",
    "junk mail": "spam",
    "bulk mail": "spam",
    "junk-e-mail": "spam",
    "courrier indésirable": "spam",
    "posta indesiderata": "spam",
    "email de lixo eletrônico": "spam",
    "correo no deseado": "spam",
    "archive": "archive",
    "archived": "archive",
    "archiv": "archive",
    "archivio": "archive",
    "arquivo": "archive",
    "outbox": "outbox",
    "postausgang": "outbox",
    "boîte d'envoi": "outbox",
    "posta in uscita": "outbox",
    "caixa de saída": "outbox",
    "conversation history": "conversation_history",
    "unterhaltungsverlauf": "conversation_history",
    "notes": "notes",
    "notizen": "notes",
    "note": "notes",
    "notas": "notes",
}

_IMAP_SUBFOLDERS = {
    "sent": "sent",
    "sent items": "sent",
    "sent messages": "sent",
    "drafts": "drafts",
    "trash": "trash",
    "deleted": "trash",
    "deleted items": "trash",
    "spam": "spam",
    "junk": "spam",
    "junk email": "spam",
    "archive": "archive",
    "archived": "archive",
}

_LOCALIZED_INBOX = frozenset(
    {
        "inbox",
        "posteingang",
        "boîte de réception",
        "posta in arrivo",
        "caixa de entrada",
        "bandeja de entrada",
        "postvak in",
    }
)

# Substring hints checked in order after the exact tables
_KEYWORD_HINTS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "sent",
        ("sent", "enviado", "gesendete", "envoyé", "skickat", "verzonden", "inviati", "wysłane"),
    ),
    (
        "drafts",
        ("draft", "rascunho", "borrador", "entwurf", "brouillon", "bozz", "concept"),
    ),
    (
        "trash",
        (
            "trash",
            "deleted",
            "lixeira",
            "papelera",
            "papierkorb",
            "corbeille",
            "cestino",
            "kosz",
            "gelöscht",
            "supprimé",
        ),
    ),
    (
        "spam",
        ("spam", "junk", "bulk", "lixo eletrônico", "no deseado", "indésirable", "indesiderata"),
    ),
)

_ARCHIVE_HINTS = ("archive", "archiv", "archivio", "arquivo")

# Opaque Microsoft folder IDs (base64-like, long)
_OPAQUE_ID = re.compile(r"^[a-z0-9=\-_]{50,}", re.IGNORECASE)


def normalize_folder_to_canonical(label: str | None) -> str:
    """Map one provider label to its canonical folder name.

    Args:
        label: Raw label or folder name.

    Returns:
        Lowercase canonical name. Unknown labels are returned lowercased;
        empty labels map to ``inbox``.
    """
    if not label or not label.strip():
        return DEFAULT_FOLDER

    normalized = label.strip().lower()

    if normalized.startswith("category_"):
        category = normalized.removeprefix("category_")
        if category in _GMAIL_CATEGORIES:
            return _GMAIL_CATEGORIES[category]

    if normalized.startswith("label_") or "/label_" in normalized:
        return "custom"

    if normalized in _GMAIL_LABELS:
        return _GMAIL_LABELS[normalized]

    if _OPAQUE_ID.match(normalized):
        return normalized

    if normalized in _MICROSOFT_FOLDERS:
        return _MICROSOFT_FOLDERS[normalized]

    if normalized.startswith(("inbox.", "inbox/")):
        subfolder = normalized[len("inbox.") :]
        if subfolder in _IMAP_SUBFOLDERS:
            return _IMAP_SUBFOLDERS[subfolder]

    for canonical, hints in _KEYWORD_HINTS:
        if any(hint in normalized for hint in hints):
            return canonical

    if normalized in _LOCALIZED_INBOX:
        return "inbox"

    if any(hint in normalized for hint in _ARCHIVE_HINTS):
        return "archive"

    return normalized


def assign_folder(
    labels: Sequence[str] | None,
    sender_email: str | None = None,
    account_email: str | None = None,
) -> str:
    """Choose the canonical folder of a message.

    All labels are canonicalized and the highest-priority location wins
    (trash > spam > drafts > sent > inbox > archive). Without any of those
    the first label naming a real location is used, then ``inbox``.

    A message sent by the account owner lands in ``sent`` unless it is a
    draft.

    Args:
        labels: Raw provider labels.
        sender_email: Sender address of the message.
        account_email: Address of the synced account.

    Returns:
        Canonical folder name.
    """
    canonical = [normalize_folder_to_canonical(label) for label in labels or () if label]

    folder = next((f for f in FOLDER_PRIORITY if f in canonical), None)
    if folder is None:
        folder = next((f for f in canonical if f not in NON_LOCATION_FOLDERS), DEFAULT_FOLDER)

    if (
        sender_email
        and account_email
        and sender_email.strip().lower() == account_email.strip().lower()
        and folder != "drafts"
    ):
        folder = "sent"

    return folder


def validate_folder_assignment(
    labels: Sequence[str] | None,
    folder: str,
    message_id: str | None = None,
) -> bool:
    """Check a folder assignment for a suspicious fallback to inbox.

    A warning is logged instead of raising so a bad label never blocks
    ingestion.

    Args:
        labels: Raw provider labels.
        folder: Assigned folder.
        message_id: Provider message ID for the log entry.

    Returns:
        True if the assignment looks consistent.
    """
    if not labels:
        return True
    if folder != DEFAULT_FOLDER:
        return True

    canonical = {normalize_folder_to_canonical(label) for label in labels if label}
    if DEFAULT_FOLDER in canonical or canonical <= NON_LOCATION_FOLDERS:
        return True

    logger.warning(
        "folder_assignment_suspicious",
        message_id=message_id,
        labels=list(labels),
        folder=folder,
    )
    return False
