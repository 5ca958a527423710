from __future__ import annotations

from typing import Any, Protocol, TypeVar

import httpx
import msgspec

from ..errors import RetryAfter, TransportError
from ..logging import get_logger
from .api_schemas import Message, User

logger = get_logger(__name__)

__all__ = [
    "BotClient",
    "HttpBotClient",
    "retry_after_from_payload",
]

T = TypeVar("T")

_DEFAULT_RETRY_AFTER = 5.0


class BotClient(Protocol):
    async def close(self) -> None: ...

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 10,
        limit: int | None = None,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]: ...

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        disable_notification: bool | None = None,
        parse_mode: str | None = None,
    ) -> Message | None: ...

    async def delete_message(self, chat_id: int, message_id: int) -> bool: ...

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
        show_alert: bool = False,
    ) -> bool: ...

    async def get_me(self) -> User | None: ...


def retry_after_from_payload(payload: Any) -> float | None:
    if not isinstance(payload, dict):
        return None
    params = payload.get("parameters")
    if not isinstance(params, dict):
        return None
    value = params.get("retry_after")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class HttpBotClient:
    def __init__(
        self,
        token: str,
        *,
        timeout_s: float = 120,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = "https://api.telegram.org",
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"{base_url.rstrip('/')}/bot{token}"
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = http_client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, *, json: dict[str, Any]) -> Any:
        logger.debug("telegram.request", method=method, payload=json)
        try:
            resp = await self._client.post(f"{self._base}/{method}", json=json)
        except httpx.HTTPError as exc:
            url = getattr(exc.request, "url", None) if _has_request(exc) else None
            logger.error(
                "telegram.network_error",
                method=method,
                url=str(url) if url is not None else None,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            raise TransportError(str(exc), method=method) from exc

        if resp.status_code == 429:
            retry_after = _DEFAULT_RETRY_AFTER
            try:
                parsed = retry_after_from_payload(resp.json())
            except ValueError:
                parsed = None
            if parsed is not None:
                retry_after = parsed
            logger.warning(
                "telegram.rate_limited", method=method, retry_after=retry_after
            )
            raise RetryAfter(retry_after, method=method)

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "telegram.http_error",
                method=method,
                status=resp.status_code,
                url=str(resp.request.url),
                body=resp.text,
            )
            raise TransportError(
                f"{method} failed with HTTP {resp.status_code}", method=method
            ) from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            logger.error(
                "telegram.bad_response",
                method=method,
                status=resp.status_code,
                error=str(exc),
                body=resp.text,
            )
            raise TransportError(
                f"{method} returned a non-JSON body", method=method
            ) from exc

        return self._parse_telegram_envelope(method=method, resp=resp, payload=payload)

    def _parse_telegram_envelope(
        self, *, method: str, resp: httpx.Response, payload: Any
    ) -> Any:
        if not isinstance(payload, dict):
            logger.error(
                "telegram.invalid_payload",
                method=method,
                url=str(resp.request.url),
                payload=payload,
            )
            raise TransportError(f"{method} returned an invalid payload", method=method)

        if not payload.get("ok"):
            if payload.get("error_code") == 429:
                retry_after = retry_after_from_payload(payload)
                raise RetryAfter(
                    _DEFAULT_RETRY_AFTER if retry_after is None else retry_after,
                    method=method,
                )
            logger.error(
                "telegram.api_error",
                method=method,
                url=str(resp.request.url),
                payload=payload,
            )
            description = payload.get("description") or "unknown error"
            raise TransportError(f"{method}: {description}", method=method)

        logger.debug("telegram.response", method=method, payload=payload)
        return payload.get("result")

    def _decode_result(self, *, method: str, payload: Any, model: type[T]) -> T | None:
        if payload is None:
            return None
        try:
            return msgspec.convert(payload, model)
        except msgspec.ValidationError as exc:
            logger.error(
                "telegram.decode_error",
                method=method,
                error=str(exc),
                payload=payload,
            )
            return None

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 10,
        limit: int | None = None,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"timeout": timeout_s}
        if offset is not None:
            params["offset"] = offset
        if limit is not None:
            params["limit"] = limit
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        result = await self._request("getUpdates", json=params)
        if not isinstance(result, list):
            logger.error("telegram.invalid_updates", payload=result)
            raise TransportError(
                "getUpdates returned a non-list result", method="getUpdates"
            )
        return result

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        disable_notification: bool | None = None,
        parse_mode: str | None = None,
    ) -> Message | None:
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to_message_id is not None:
            params["reply_to_message_id"] = reply_to_message_id
        if disable_notification is not None:
            params["disable_notification"] = disable_notification
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        result = await self._request("sendMessage", json=params)
        return self._decode_result(method="sendMessage", payload=result, model=Message)

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        result = await self._request(
            "deleteMessage", json={"chat_id": chat_id, "message_id": message_id}
        )
        return bool(result)

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
        show_alert: bool = False,
    ) -> bool:
        params: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text is not None:
            params["text"] = text
        if show_alert:
            params["show_alert"] = True
        result = await self._request("answerCallbackQuery", json=params)
        return bool(result)

    async def get_me(self) -> User | None:
        result = await self._request("getMe", json={})
        return self._decode_result(method="getMe", payload=result, model=User)


def _has_request(exc: httpx.HTTPError) -> bool:
    try:
        exc.request
    except RuntimeError:
        return False
    return True
