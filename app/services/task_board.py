"""
Task Board Client

Looks up the requirement text of a board item so the review can be
aligned against what the student was asked to build.

Board items carry a "CardId" custom field equal to the branch name
(e.g. "3-B"), so the item id and the branch are the same string.
"""

import logging
from typing import Optional, List, Dict, Any

from app.config import get_settings
from app.models.project import ProjectRecord
from app.services.http import HttpClientFactory, get_http_factory

logger = logging.getLogger(__name__)

CARD_ID_FIELD = "CardId"


class TrelloTaskBoard:
    """TaskBoard backed by Trello boards."""

    def __init__(self, api_key: Optional[str] = None, token: Optional[str] = None, http: Optional[HttpClientFactory] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.TRELLO_API_KEY
        self.token = token if token is not None else settings.TRELLO_TOKEN
        self.http = http or get_http_factory()
        self.base_url = settings.TRELLO_API_URL

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = {"key": self.api_key, "token": self.token}
        query.update(params or {})

        async with self.http.client(self.base_url) as client:
            response = await client.get(path, params=query)

        response.raise_for_status()
        return response.json()

    async def lookup_item(self, project: ProjectRecord, item_id: str) -> Optional[str]:
        """
        Requirement text for a board item.

        Returns:
            "title\\n\\ndescription\\n\\nchecklist" text, or None if the board
            is not configured or no card carries the id
        """
        if not project.board_id or not self.api_key or not self.token:
            logger.info(f"Task board not configured for project {project.project_id}")
            return None

        fields: List[Dict[str, Any]] = await self._get(f"/boards/{project.board_id}/customFields")
        field_id = next((f["id"] for f in fields if f.get("name") == CARD_ID_FIELD), None)
        if not field_id:
            logger.warning(f"Board {project.board_id} has no '{CARD_ID_FIELD}' custom field")
            return None

        cards: List[Dict[str, Any]] = await self._get(
            f"/boards/{project.board_id}/cards",
            params={"customFieldItems": "true", "checklists": "all"}
        )

        for card in cards:
            for item in card.get("customFieldItems") or []:
                if item.get("idCustomField") == field_id and (item.get("value") or {}).get("text") == item_id:
                    return _card_text(card)

        return None


def _card_text(card: Dict[str, Any]) -> str:
    parts = [card.get("name", "").strip(), (card.get("desc") or "").strip()]

    checklist_items = [
        f"- {entry.get('name', '').strip()}"
        for checklist in card.get("checklists") or []
        for entry in checklist.get("checkItems") or []
    ]
    if checklist_items:
        parts.append("\n".join(checklist_items))

    return "\n\n".join(p for p in parts if p)
