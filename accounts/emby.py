"""Emby user-management client used for account provisioning."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from core.exceptions import ExternalServiceError
from core.sentry import add_breadcrumb

logger = logging.getLogger(__name__)

EMBY_TAG = "Emby API"
USER_MESSAGE_LIMIT = 200


class EmbyClient:
    """Creates, resets and revokes Emby accounts.

    New accounts copy the policy of a template user so every provisioned
    account starts with the same library permissions.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        copy_from_user_id: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Emby server URL, e.g. ``https://emby.example.com``
            token: Emby API key
            copy_from_user_id: Template user whose policy is copied on creation
            timeout: Timeout in seconds for every request
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.copy_from_user_id = copy_from_user_id
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "X-Emby-Token": self.token,
                    "User-Agent": "NyaMediaBot/1.0",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def check_api(self) -> bool:
        """Check Emby API connectivity."""
        try:
            client = await self._get_client()
            resp = await client.get("/System/Info/Public")
            return bool(resp.status_code == 200)
        except Exception:
            return False

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request and translate every failure into ExternalServiceError."""
        add_breadcrumb("emby", operation, {"method": method, "path": path})
        client = await self._get_client()

        try:
            response = await client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            logger.error(f"Emby {operation} timed out: {e}")
            raise ExternalServiceError(
                f"Emby {operation} timed out", tag=EMBY_TAG, details={"path": path}
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Emby {operation} request failed: {e}")
            raise ExternalServiceError(
                f"Emby {operation} request failed: {e}", tag=EMBY_TAG, details={"path": path}
            ) from e

        if response.is_success:
            return response

        body = response.text
        logger.warning(f"Emby {operation} returned {response.status_code}: {body}")
        # 4xx bodies are plain explanations such as a duplicate user name.
        user_message = None
        if 400 <= response.status_code < 500 and body.strip():
            user_message = body.strip()[:USER_MESSAGE_LIMIT]
        raise ExternalServiceError(
            f"Emby {operation} returned {response.status_code}",
            tag=EMBY_TAG,
            details={"status_code": response.status_code, "body": body, "path": path},
            user_message=user_message,
        )

    async def create_user(self, username: str) -> str:
        """Create an Emby user copying the template policy.

        Returns:
            The new Emby user id
        """
        payload: dict[str, Any] = {"Name": username}
        if self.copy_from_user_id:
            payload["CopyFromUserId"] = self.copy_from_user_id
            payload["UserCopyOptions"] = ["UserPolicy"]

        response = await self._request("create_user", "POST", "/Users/New", json=payload)

        try:
            user_id = response.json()["Id"]
        except (ValueError, KeyError, TypeError) as e:
            raise ExternalServiceError(
                "Emby create_user returned no user id",
                tag=EMBY_TAG,
                details={"body": response.text},
            ) from e

        logger.info(f"Created Emby user '{username}' ({user_id})")
        return str(user_id)

    async def reset_password(self, user_id: str) -> None:
        """Reset an Emby user's password to empty."""
        await self._request(
            "reset_password",
            "POST",
            f"/Users/{user_id}/Password",
            json={"Id": user_id, "ResetPassword": True},
        )
        logger.info(f"Reset password for Emby user {user_id}")

    async def delete_user(self, user_id: str) -> None:
        """Revoke (delete) an Emby user."""
        await self._request("delete_user", "DELETE", f"/Users/{user_id}")
        logger.info(f"Deleted Emby user {user_id}")
