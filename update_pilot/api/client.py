import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..errors import ManagerApiError


class ManagerApiClient:
    """
    Thin async client for the remote management API.

    Every method returns the decoded JSON body. A 204 response or an empty body
    is normalised to ``{}``, which callers read as "nothing there"; every other
    failure surfaces as ManagerApiError.
    """

    TASK_PATH = "/api/task"
    SELF_UPDATE_PATH = "/api/server/self-update"
    COMPOSER_PATH = "/api/server/composer"
    PHP_WEB_PATH = "/api/server/php-web"
    CONTAO_PATH = "/api/server/contao"
    MIGRATION_PATH = "/api/contao/database-migration"

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: int = 30,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self.logger = logging.getLogger(__name__)

    async def __aenter__(self) -> "ManagerApiClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": "Update Pilot"},
            )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # Tasks

    async def get_task_data(self) -> Dict[str, Any]:
        return await self._request("GET", self.TASK_PATH)

    async def set_task_data(self, task: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", self.TASK_PATH, payload=task)

    async def patch_task_status(self, status: str) -> Dict[str, Any]:
        return await self._request("PATCH", self.TASK_PATH, payload={"status": status})

    async def delete_task_data(self) -> Dict[str, Any]:
        return await self._request("DELETE", self.TASK_PATH)

    # Server status

    async def get_update_status(self) -> Dict[str, Any]:
        composer, self_update = await asyncio.gather(
            self._request("GET", self.COMPOSER_PATH),
            self._request("GET", self.SELF_UPDATE_PATH),
        )
        return {"composer": composer, "selfUpdate": self_update}

    async def update_version_info(self) -> Dict[str, Any]:
        self_update, php_web, contao = await asyncio.gather(
            self._request("GET", self.SELF_UPDATE_PATH),
            self._request("GET", self.PHP_WEB_PATH),
            self._request("GET", self.CONTAO_PATH),
        )
        version_info = {
            "contaoManagerVersion": self_update.get("current_version"),
            "phpVersion": php_web.get("version"),
            "contaoVersion": contao.get("version"),
        }
        return {"success": True, "versionInfo": version_info}

    # Database migrations

    async def get_database_migration_status(self) -> Dict[str, Any]:
        return await self._request("GET", self.MIGRATION_PATH)

    async def start_database_migration(
        self, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return await self._request("PUT", self.MIGRATION_PATH, payload=payload or {})

    async def delete_database_migration_task(self) -> Dict[str, Any]:
        return await self._request("DELETE", self.MIGRATION_PATH)

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        if self._session is None:
            raise ManagerApiError(
                "Client session is not open; use 'async with ManagerApiClient(...)'"
            )

        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        self.logger.debug(f"{method} {url}")

        try:
            async with self._session.request(
                method, url, json=payload, headers=headers, timeout=self.timeout
            ) as response:
                if response.status == 204:
                    self.logger.debug(f"{method} {url} -> 204 No Content")
                    return {}

                text = await response.text()

                if response.status >= 400:
                    raise ManagerApiError(
                        f"{method} {path} failed: {text.strip() or response.reason}",
                        status=response.status,
                        body=text,
                    )

                if not text or not text.strip():
                    return {}

                try:
                    return json.loads(text)
                except json.JSONDecodeError as e:
                    raise ManagerApiError(
                        f"Invalid JSON response from {path}: {str(e)}",
                        body=text,
                    )

        except asyncio.TimeoutError:
            raise ManagerApiError(
                f"{method} {path} timed out after {self.timeout.total}s"
            )
        except aiohttp.ClientError as e:
            raise ManagerApiError(f"Network error calling {method} {path}: {str(e)}")
