# database/token_store.py

import logging
from pathlib import Path
from typing import Optional

from database.manager import JsonFileStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "jwt_token"

class TokenStore:
    """Хранилище JWT токена; пустой токен означает, что пользователь не вошёл"""

    def __init__(self, path: Path, backup_dir: Optional[Path] = None):
        self.file = JsonFileStore(path, backup_dir)

    def get_token(self) -> str:
        return self.file.get(TOKEN_KEY) or ""

    def is_logged_in(self) -> bool:
        return bool(self.get_token())

    async def save_token(self, token: str) -> None:
        await self.file.update({TOKEN_KEY: token})
        logger.info("🔑 Токен авторизации сохранён")

    async def delete_token(self) -> None:
        await self.file.update({}, removals=(TOKEN_KEY,))
        logger.info("🚪 Токен авторизации удалён")
