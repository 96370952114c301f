from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from core.domain.entities.user_entity import UserEntity


class UserRepositoryInterface(ABC):
    @abstractmethod
    async def find_user_by_address(self, address: str) -> Optional[UserEntity]:
        raise NotImplementedError

    @abstractmethod
    async def find_users_by_role(self, role: str) -> List[UserEntity]:
        raise NotImplementedError
