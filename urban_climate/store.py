"""
Firestore access for the `cities` and `users` collections.

Role rules are applied on every user write:
- admin users never carry a city (cityId is cleared)
- public managers (gestor_publico) must be bound to a city
"""

import logging
from typing import Any, Dict, List, Optional

from google.cloud import firestore

from .config import get_settings
from .errors import DashboardError

logger = logging.getLogger(__name__)

CITIES = "cities"
USERS = "users"

ROLE_ADMIN = "admin"
ROLE_PUBLIC_MANAGER = "gestor_publico"
ROLES = (ROLE_ADMIN, ROLE_PUBLIC_MANAGER)


def apply_role_rules(role: str, city_id: Optional[str]) -> Optional[str]:
    """Return the cityId to store for the given role, or raise if the pair is invalid."""
    if role not in ROLES:
        raise DashboardError(f"Unknown role '{role}'. Expected one of: {', '.join(ROLES)}")
    if role == ROLE_ADMIN:
        return None
    if not city_id:
        raise DashboardError("A public manager must be associated with a city.")
    return city_id


def _with_id(snapshot) -> Dict[str, Any]:
    return {"id": snapshot.id, **(snapshot.to_dict() or {})}


class FirestoreStore:
    def __init__(self, client: Optional[firestore.Client] = None):
        self._client = client

    @property
    def client(self) -> firestore.Client:
        if self._client is None:
            self._client = firestore.Client(project=get_settings().firestore_project_id)
        return self._client

    # ------------ Cities ------------
    def add_city(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise DashboardError("City name is required.")
        _, ref = self.client.collection(CITIES).add({
            "name": name,
            "createdAt": firestore.SERVER_TIMESTAMP,
        })
        logger.info("Added city %s (%s)", name, ref.id)
        return ref.id

    def list_cities(self) -> List[Dict[str, Any]]:
        return [_with_id(doc) for doc in self.client.collection(CITIES).stream()]

    def city_exists(self, city_id: str) -> bool:
        return self.client.collection(CITIES).document(city_id).get().exists

    # ------------ Users ------------
    def _check_city(self, city_id: Optional[str]) -> None:
        if city_id and not self.city_exists(city_id):
            raise DashboardError(f"City '{city_id}' does not exist.")

    def create_user(self, display_name: str, email: str, role: str = ROLE_PUBLIC_MANAGER,
                    city_id: Optional[str] = None, user_id: Optional[str] = None) -> str:
        """Create a user profile; `user_id` is the auth uid when the account already exists."""
        city_id = apply_role_rules(role, city_id)
        self._check_city(city_id)
        data = {
            "displayName": display_name,
            "email": email,
            "roles": [role],
            "cityId": city_id,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        users = self.client.collection(USERS)
        if user_id:
            users.document(user_id).set(data)
        else:
            _, ref = users.add(data)
            user_id = ref.id
        logger.info("Created user %s with role %s", user_id, role)
        return user_id

    def list_users(self) -> List[Dict[str, Any]]:
        return [_with_id(doc) for doc in self.client.collection(USERS).stream()]

    def get_user(self, user_id: str) -> Dict[str, Any]:
        snapshot = self.client.collection(USERS).document(user_id).get()
        if not snapshot.exists:
            raise DashboardError(f"User '{user_id}' not found.")
        return _with_id(snapshot)

    def update_user(self, user_id: str, display_name: str, role: str,
                    city_id: Optional[str] = None) -> None:
        city_id = apply_role_rules(role, city_id)
        self._check_city(city_id)
        ref = self.client.collection(USERS).document(user_id)
        if not ref.get().exists:
            raise DashboardError(f"User '{user_id}' not found.")
        ref.update({
            "displayName": display_name,
            "roles": [role],
            "cityId": city_id,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        })
        logger.info("Updated user %s (role %s)", user_id, role)
