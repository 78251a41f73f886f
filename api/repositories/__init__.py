"""Database access for templates, certificates and the recipient allow-list.

Each repository wraps one table and takes the request-scoped AsyncSession.
Repositories flush but never commit; the session dependency in
core.database (or the CLI) owns the transaction.
"""

from repositories.certificate_repository import CertificateRepository
from repositories.recipient_repository import (
    DuplicateRecipientError,
    RecipientRepository,
)
from repositories.template_repository import TemplateRepository
from repositories.utils import log_slow_query

__all__ = [
    "CertificateRepository",
    "DuplicateRecipientError",
    "RecipientRepository",
    "TemplateRepository",
    "log_slow_query",
]
