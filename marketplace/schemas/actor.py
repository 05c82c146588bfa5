# marketplace/schemas/actor.py
from pydantic import BaseModel

from marketplace.core.states import ActorRole


class Actor(BaseModel):
    """Аутентифицированный участник запроса. Берется только из токена провайдера."""
    id: str
    role: ActorRole

    @property
    def is_privileged(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)


# От имени системы работают фоновые задачи и внутренние обработчики событий
SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM)
