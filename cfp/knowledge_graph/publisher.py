"""
Wikidata publish client.

Talks to the MediaWiki Action API: bot login, CSRF token, then
``wbeditentity`` to create (``new=item``) or update (``id=<qid>``) an entity.
In mock mode nothing leaves the process and QIDs are derived from the label.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Dict, Optional

import httpx
import structlog
from httpx import HTTPStatusError, TimeoutException

from cfp.core.config import KnowledgeGraphConfig
from cfp.core.exceptions import ConfigurationError, EntityAlreadyExistsError, KnowledgeGraphError
from cfp.core.models import EntityDraft, PublishResult
from cfp.knowledge_graph.entity_builder import serialize_entity
from cfp.utils.reliability import with_circuit_breaker

logger = structlog.get_logger(__name__)

API_URLS = {
    "test": "https://test.wikidata.org/w/api.php",
    "production": "https://www.wikidata.org/w/api.php",
}

_CONFLICT_QID = re.compile(r"\[\[(?:Item:)?(Q\d+)\|")
_ANY_QID = re.compile(r"\b(Q\d+)\b")
# Action API error codes worth retrying
_TRANSIENT_CODES = {"maxlag", "ratelimited", "readonly", "badtoken", "internal_api_error"}


def conflicting_qid(error_info: str) -> Optional[str]:
    """QID named in a "already has label" conflict message."""
    match = _CONFLICT_QID.search(error_info) or _ANY_QID.search(error_info)
    return match.group(1) if match else None


def mock_qid(label: str) -> str:
    digest = hashlib.sha256(label.strip().lower().encode("utf-8")).hexdigest()
    return f"Q{100000000 + int(digest[:8], 16) % 100000000}"


class WikidataPublisher:
    """Creates or updates knowledge-graph entities."""

    def __init__(self, config: KnowledgeGraphConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.mode = config.publish_mode
        if self.mode != "mock" and not (config.bot_username and config.bot_password):
            raise ConfigurationError(
                "WIKIDATA_BOT_USERNAME and WIKIDATA_BOT_PASSWORD are required outside mock mode"
            )
        self.api_url = API_URLS.get(self.mode, API_URLS["test"])
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout),
            headers={"User-Agent": config.user_agent},
        )
        self._logged_in = False
        # label -> qid for entities created in mock mode
        self._mock_registry: Dict[str, str] = {}
        self.publish_calls = 0

        logger.info("Wikidata publisher initialized", mode=self.mode)

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def publish(self, draft: EntityDraft, existing_qid: Optional[str] = None) -> PublishResult:
        """
        Create a new entity, or update ``existing_qid`` when given.

        Raises:
            EntityAlreadyExistsError: an entity with this label already exists
            KnowledgeGraphError: any other API failure
        """
        self.publish_calls += 1
        if self.mode == "mock":
            return self._mock_publish(draft, existing_qid)

        await self._ensure_login()
        token = await self._csrf_token()

        form = {
            "action": "wbeditentity",
            "format": "json",
            "data": json.dumps(serialize_entity(draft)),
            "token": token,
            "bot": "1",
            "summary": "Business entity published by CFP pipeline",
        }
        if existing_qid:
            form["id"] = existing_qid
        else:
            form["new"] = "item"

        data = await self._request("POST", form)
        error = data.get("error")
        if error:
            self._raise_api_error(error)

        entity = data.get("entity") or {}
        qid = entity.get("id")
        if not qid:
            raise KnowledgeGraphError("wbeditentity returned no entity id", details={"response": data})

        logger.info("Entity published", qid=qid, created=not existing_qid, mode=self.mode)
        return PublishResult(
            qid=qid,
            created=not existing_qid,
            mode=self.mode,
            revision_id=entity.get("lastrevid"),
        )

    async def find_existing(self, label: str, language: str = "en") -> Optional[str]:
        """Exact-label lookup through ``wbsearchentities``."""
        if self.mode == "mock":
            return self._mock_registry.get(label.strip().lower())

        data = await self._request(
            "GET",
            {
                "action": "wbsearchentities",
                "search": label,
                "language": language,
                "type": "item",
                "limit": "5",
                "format": "json",
            },
        )
        for hit in data.get("search", []):
            if (hit.get("label") or "").strip().lower() == label.strip().lower():
                return hit.get("id")
        return None

    def _mock_publish(self, draft: EntityDraft, existing_qid: Optional[str]) -> PublishResult:
        key = draft.label.strip().lower()
        if existing_qid:
            self._mock_registry[key] = existing_qid
            return PublishResult(qid=existing_qid, created=False, mode="mock")

        if key in self._mock_registry:
            qid = self._mock_registry[key]
            raise EntityAlreadyExistsError(
                f"Item [[{qid}|{qid}]] already has label \"{draft.label}\"", existing_qid=qid
            )

        qid = mock_qid(draft.label)
        self._mock_registry[key] = qid
        logger.info("Mock entity published", qid=qid, claims=draft.claim_count)
        return PublishResult(qid=qid, created=True, mode="mock")

    def _raise_api_error(self, error: Dict[str, Any]) -> None:
        code = error.get("code", "unknown")
        info = error.get("info", "")
        messages = " ".join(
            str(param) for msg in error.get("messages", []) for param in msg.get("parameters", [])
        )

        if "already has label" in info or "already has label" in messages:
            qid = conflicting_qid(f"{info} {messages}")
            raise EntityAlreadyExistsError(info or "Entity already exists", existing_qid=qid)

        if code == "badtoken":
            self._logged_in = False
        status = 429 if code in _TRANSIENT_CODES else 400
        logger.error("Wikidata API error", code=code, info=info[:500])
        raise KnowledgeGraphError(f"{code}: {info}", status_code=status, details={"code": code})

    async def _ensure_login(self) -> None:
        if self._logged_in:
            return

        tokens = await self._request(
            "GET", {"action": "query", "meta": "tokens", "type": "login", "format": "json"}
        )
        login_token = tokens.get("query", {}).get("tokens", {}).get("logintoken")
        if not login_token:
            raise KnowledgeGraphError("Failed to get login token")

        result = await self._request(
            "POST",
            {
                "action": "login",
                "lgname": self.config.bot_username,
                "lgpassword": self.config.bot_password,
                "lgtoken": login_token,
                "format": "json",
            },
        )
        outcome = result.get("login", {}).get("result")
        if outcome != "Success":
            # Bad credentials will not fix themselves
            raise KnowledgeGraphError(
                f"Login failed: {outcome}",
                status_code=401,
                details={"reason": result.get("login", {}).get("reason")},
            )
        self._logged_in = True
        logger.info("Wikidata login succeeded", username=self.config.bot_username)

    async def _csrf_token(self) -> str:
        data = await self._request("GET", {"action": "query", "meta": "tokens", "format": "json"})
        token = data.get("query", {}).get("tokens", {}).get("csrftoken")
        if not token or token == "+\\":
            self._logged_in = False
            raise KnowledgeGraphError("Session has no CSRF token")
        return token

    @with_circuit_breaker(
        name="wikidata_api",
        failure_threshold=5,
        recovery_timeout=120.0,
        expected_exception=KnowledgeGraphError,
    )
    async def _request(self, method: str, params: Dict[str, str]) -> Dict[str, Any]:
        """Send one Action API request; HTTP and transport failures become KnowledgeGraphError."""
        try:
            if method == "GET":
                response = await self.http_client.get(self.api_url, params=params)
            else:
                response = await self.http_client.post(self.api_url, data=params)
            response.raise_for_status()
        except HTTPStatusError as e:
            logger.error(
                "Wikidata HTTP error",
                status_code=e.response.status_code,
                action=params.get("action"),
            )
            raise KnowledgeGraphError(
                f"HTTP {e.response.status_code}", status_code=e.response.status_code
            )
        except TimeoutException as e:
            raise KnowledgeGraphError(f"Request timeout: {e}")
        except httpx.TransportError as e:
            raise KnowledgeGraphError(f"Transport error: {e}")

        try:
            return response.json()
        except ValueError:
            raise KnowledgeGraphError("Non-JSON response from Action API", status_code=502)
