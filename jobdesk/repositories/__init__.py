from jobdesk.repositories.documents import DocumentsRepository
from jobdesk.repositories.jobs import JobsRepository
from jobdesk.repositories.users import UsersRepository

__all__ = [
    "DocumentsRepository",
    "JobsRepository",
    "UsersRepository",
]
