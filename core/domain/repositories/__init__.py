from .vault_repository_interface import VaultRepositoryInterface
from .user_repository_interface import UserRepositoryInterface
from .notification_repository_interface import NotificationRepositoryInterface
from .checkpoint_repository_interface import CheckpointRepositoryInterface

__all__ = [
    "VaultRepositoryInterface",
    "UserRepositoryInterface",
    "NotificationRepositoryInterface",
    "CheckpointRepositoryInterface",
]
