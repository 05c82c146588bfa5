# tests/factories.py
from marketplace.core.states import ActorRole
from marketplace.schemas.actor import Actor

BUYER = Actor(id="buyer-1", role=ActorRole.BUYER)
OTHER_BUYER = Actor(id="buyer-2", role=ActorRole.BUYER)
SELLER = Actor(id="seller-1", role=ActorRole.SELLER)
OTHER_SELLER = Actor(id="seller-2", role=ActorRole.SELLER)
COURIER = Actor(id="courier-1", role=ActorRole.COURIER)
OTHER_COURIER = Actor(id="courier-2", role=ActorRole.COURIER)
ADMIN = Actor(id="admin-1", role=ActorRole.ADMIN)
