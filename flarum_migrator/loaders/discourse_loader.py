"""Discourse API loader."""

import itertools
import logging
import os
import secrets
import time
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import requests
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import BaseLoader
from ..exceptions import RecordRejectedError, TargetConnectionError
from ..models.discourse import (
    AdminUser,
    CategoryCreateResponse,
    ErrorResponse,
    PostCreateResponse,
    UploadResponse,
    UserCreateResponse,
)
from ..models.migration import TargetConfig
from ..services.mapping_store import MappingStore

logger = logging.getLogger(__name__)


class DiscourseLoader(BaseLoader):
    """
    Loader for the Discourse REST API.

    Authenticates with an admin API key. Posts are created as their author
    by switching the ``Api-Username`` header; posts by authors that were
    not imported are attributed to the configured API user.
    """

    DEFAULT_CATEGORY_COLOR = "0088CC"
    DEFAULT_CATEGORY_TEXT_COLOR = "FFFFFF"

    def __init__(
        self,
        config: TargetConfig,
        store: MappingStore,
        dry_run: bool = False,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the Discourse loader.

        Args:
            config: API settings
            store: ID mapping store receiving the new mappings
            dry_run: If True, fabricate ids instead of calling the API
            session: Custom requests session
        """
        super().__init__(store, dry_run)
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.rate_limit = config.rate_limit
        self._last_request_time = 0.0
        self._session = session or self._create_session()
        self._usernames: Dict[int, str] = {}
        self._fake_ids = itertools.count(1)

    def _create_session(self) -> requests.Session:
        """Create a requests session with authentication and retry logic."""
        session = requests.Session()

        retry_config = self.config.retry_config
        retries = Retry(
            total=retry_config.get("max_retries", 3),
            backoff_factor=retry_config.get("backoff_factor", 2.0),
            status_forcelist=[429, 500, 502, 503, 504],
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        if self.config.api_key:
            session.headers["Api-Key"] = self.config.api_key
        session.headers["Api-Username"] = self.config.api_username
        session.headers["Accept"] = "application/json"

        return session

    def _rate_limit_wait(self):
        """Wait to respect rate limits."""
        if self.rate_limit > 0:
            elapsed = time.time() - self._last_request_time
            wait_time = (1.0 / self.rate_limit) - elapsed
            if wait_time > 0:
                time.sleep(wait_time)
        self._last_request_time = time.time()

    def _request(
        self,
        method: str,
        path: str,
        api_username: Optional[str] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Send one API request.

        Raises:
            TargetConnectionError: Discourse is unreachable or keeps failing
            RecordRejectedError: Discourse answered with a client error
        """
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        if api_username:
            headers["Api-Username"] = api_username

        # The session adapter only retries idempotent methods. A 429 is
        # answered before anything is created, so it is retried here for
        # every method.
        max_retries = self.config.retry_config.get("max_retries", 3)
        for attempt in range(max_retries + 1):
            if attempt:
                for _, fh in (kwargs.get("files") or {}).values():
                    fh.seek(0)
            self._rate_limit_wait()

            try:
                response = self._session.request(
                    method, url, headers=headers, timeout=self.config.timeout, **kwargs
                )
            except (requests.exceptions.ConnectionError,
                    requests.exceptions.Timeout,
                    requests.exceptions.RetryError) as e:
                raise TargetConnectionError(f"Discourse request {method} {path} failed: {e}") from e

            if response.status_code != 429 or attempt == max_retries:
                break
            wait = self._retry_after(response, attempt)
            logger.warning(f"Rate limited on {method} {path}, retrying in {wait:.1f}s")
            time.sleep(wait)

        if response.status_code >= 500:
            raise TargetConnectionError(
                f"Discourse request {method} {path} failed with {response.status_code}"
            )

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            try:
                error_msg = ErrorResponse.describe(response.json())
            except ValueError:
                error_msg = response.text or str(e)
            raise RecordRejectedError(error_msg, status_code=response.status_code) from e

        try:
            return response.json() if response.text else {}
        except ValueError as e:
            raise RecordRejectedError(f"Invalid JSON from {method} {path}: {e}") from e

    def _retry_after(self, response: requests.Response, attempt: int) -> float:
        """Seconds to wait after a 429: ``Retry-After`` if given, else backoff."""
        try:
            return max(float(response.headers.get("Retry-After", "")), 0.0)
        except ValueError:
            return self.config.retry_config.get("backoff_factor", 2.0) * (2 ** attempt)

    @staticmethod
    def _parse(model, payload: Dict[str, Any], what: str):
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise RecordRejectedError(f"Unexpected response creating {what}: {e}") from e

    @staticmethod
    def _timestamp(value: Any) -> Optional[str]:
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def create_user(self, data: Dict[str, Any]) -> int:
        """Create a user through ``POST /users.json``."""
        if self.dry_run:
            return next(self._fake_ids)

        body = {
            "name": data.get("name") or data["username"],
            "username": data["username"],
            "email": data.get("email"),
            "password": secrets.token_urlsafe(24),
            "active": True,
            "approved": True,
        }
        response = self._parse(
            UserCreateResponse, self._request("POST", "/users.json", json=body), "user"
        )
        if not response.success or response.user_id is None:
            details = "; ".join(
                f"{field}: {', '.join(messages)}" for field, messages in response.errors.items()
            )
            raise RecordRejectedError(details or response.message or "user was not created")

        self._usernames[response.user_id] = data["username"]
        return response.user_id

    def create_category(self, data: Dict[str, Any]) -> int:
        """Create a category through ``POST /categories.json``."""
        if self.dry_run:
            return next(self._fake_ids)

        body = {
            "name": data["name"],
            "color": self.DEFAULT_CATEGORY_COLOR,
            "text_color": self.DEFAULT_CATEGORY_TEXT_COLOR,
        }
        for optional in ("description", "parent_category_id", "position"):
            if data.get(optional) is not None:
                body[optional] = data[optional]

        response = self._parse(
            CategoryCreateResponse,
            self._request("POST", "/categories.json", json=body),
            "category",
        )
        return response.category.id

    def create_post(self, data: Dict[str, Any]) -> Tuple[int, int]:
        """Create a topic (payload has ``title``) or a reply (payload has ``topic_id``)."""
        if self.dry_run:
            post_id = next(self._fake_ids)
            return post_id, data.get("topic_id") or post_id

        body = {
            "raw": data["raw"],
            "created_at": self._timestamp(data.get("created_at")),
            "skip_validations": True,
        }
        if "title" in data:
            body["title"] = data["title"]
            if data.get("category") is not None:
                body["category"] = data["category"]
        else:
            body["topic_id"] = data["topic_id"]

        response = self._parse(
            PostCreateResponse,
            self._request(
                "POST", "/posts.json",
                api_username=self.username_for(data.get("user_id")),
                json=body,
            ),
            "post",
        )
        return response.id, response.topic_id

    def topic_of(self, post_id: int) -> Optional[int]:
        """Topic of an existing post, via ``GET /posts/{id}.json``."""
        if self.dry_run:
            return next(self._fake_ids)
        post = self._parse(PostCreateResponse, self._request("GET", f"/posts/{post_id}.json"), "post")
        return post.topic_id

    def username_for(self, user_id: Optional[int]) -> str:
        """Username to post as; falls back to the API user for unknown authors."""
        if user_id is None or user_id < 0:
            return self.config.api_username
        if user_id not in self._usernames:
            try:
                user = AdminUser.model_validate(self._request("GET", f"/admin/users/{user_id}.json"))
            except (RecordRejectedError, ValidationError) as e:
                logger.warning(f"Cannot resolve Discourse user {user_id}, posting as {self.config.api_username}: {e}")
                return self.config.api_username
            self._usernames[user_id] = user.username
        return self._usernames[user_id]

    def upload_avatar(self, user_id: int, path: str) -> Optional[int]:
        """Upload an image and pick it as the user's avatar."""
        if self.dry_run:
            return next(self._fake_ids)

        with open(path, "rb") as fh:
            upload = UploadResponse.model_validate(self._request(
                "POST", "/uploads.json",
                data={"type": "avatar", "user_id": user_id, "synchronous": "true"},
                files={"file": (os.path.basename(path), fh)},
            ))

        username = self.username_for(user_id)
        self._request(
            "PUT", f"/u/{username}/preferences/avatar/pick.json",
            api_username=username,
            json={"upload_id": upload.id, "type": "uploaded"},
        )
        return upload.id

    def validate_connection(self) -> bool:
        """Validate connection to the API."""
        if self.dry_run:
            return True
        self._request("GET", "/site.json")
        return True

    def close(self) -> None:
        self._session.close()
