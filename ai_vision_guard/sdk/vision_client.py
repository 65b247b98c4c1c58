"""
Authenticated client for the hosted vision/chat model API.

Chat completion, file upload and file analysis all run through the same
AuthenticatedRequestExecutor; they differ only in how a single attempt
builds its request and decodes the response.
"""

import logging
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Optional, Tuple, Union

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
)

from ..config.loader import AppConfig
from ..core.credentials import TokenLifecycleManager
from ..core.errors import (
    AuthorizationRejected,
    EmptyResult,
    OperationTimedOut,
    PayloadTooLarge,
    RequestFailed,
)
from ..core.executor import AuthenticatedRequestExecutor
from .oauth import OAuthTokenIssuer

logger = logging.getLogger(__name__)


class ModelName(Enum):
    """Known model identifiers. Only some of them accept images."""
    GIGA_CHAT = "GigaChat"
    GIGA_CHAT_PRO = "GigaChat-Pro"
    GIGA_CHAT_MAX = "GigaChat-Max"
    GIGA_CHAT_PLUS = "GigaChat-Plus"
    GIGA_CHAT_2 = "GigaChat-2"
    GIGA_CHAT_2_PRO = "GigaChat-2-Pro"
    GIGA_CHAT_2_MAX = "GigaChat-2-Max"


class ImageMimeType(Enum):
    """Image MIME types accepted by the file upload endpoint."""
    JPEG = "image/jpeg"
    PNG = "image/png"
    TIFF = "image/tiff"
    BMP = "image/bmp"


ModelLike = Union[str, ModelName]


def _value(item: Union[str, Enum]) -> str:
    return item.value if isinstance(item, Enum) else item


def _error_detail(error: APIStatusError) -> str:
    return error.response.text[:500] or str(error.message)


def _first_message_content(completion: Any) -> str:
    choices = getattr(completion, "choices", None) or []
    message = getattr(choices[0], "message", None) if choices else None
    content = getattr(message, "content", None)
    if not isinstance(content, str) or not content.strip():
        raise EmptyResult("Model response contains no text content")
    return content


class VisionChatClient:
    """Client for prompts, file uploads and file analysis.

    The bearer token is supplied per request from the TokenLifecycleManager;
    the OpenAI SDK's own retries are disabled so credential retries follow a
    single policy.
    """

    def __init__(
        self,
        config: AppConfig,
        auth_key: Optional[str] = None,
        openai_client: Optional[AsyncOpenAI] = None,
        token_manager: Optional[TokenLifecycleManager] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            config: Application configuration
            auth_key: Static authorization key (required unless token_manager given)
            openai_client: Pre-built AsyncOpenAI client (tests, custom transports)
            token_manager: Pre-built token manager
            http_client: HTTP client shared by the token issuer and the SDK

        Raises:
            ValueError: If neither auth_key nor token_manager is provided
        """
        self.config = config
        self.timeout = config.limits.request_timeout_seconds
        self.max_upload_bytes = config.limits.max_upload_bytes

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            verify=config.api.verify_ssl,
            timeout=httpx.Timeout(self.timeout),
        )

        if token_manager is None:
            if not auth_key:
                raise ValueError("auth_key is required when no token_manager is given")
            issuer = OAuthTokenIssuer(
                auth_key=auth_key,
                auth_url=config.api.auth_url,
                scope=config.api.scope,
                http_client=self._http_client,
            )
            token_manager = TokenLifecycleManager(
                issuer,
                timeout=self.timeout,
                refresh_margin=timedelta(seconds=config.limits.token_refresh_margin_seconds),
            )
        self.token_manager = token_manager

        self._openai = openai_client or AsyncOpenAI(
            api_key="unset",
            base_url=config.api.base_url,
            max_retries=0,
            timeout=self.timeout,
            http_client=self._http_client,
        )
        self.executor = AuthenticatedRequestExecutor(
            token_manager,
            max_retries=config.limits.max_auth_retries,
            timeout=self.timeout,
        )

    @classmethod
    async def create(cls, config: AppConfig, auth_key: str, **kwargs: Any) -> "VisionChatClient":
        """Build a client and obtain its first credential eagerly."""
        client = cls(config, auth_key=auth_key, **kwargs)
        try:
            await client.token_manager.ensure_valid()
        except BaseException:
            await client.aclose()
            raise
        return client

    async def __aenter__(self) -> "VisionChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    def _api(self, token: str) -> AsyncOpenAI:
        return self._openai.with_options(api_key=token)

    async def _call(self, operation: str, request: Awaitable[Any]) -> Any:
        """Await an SDK request and map its failures onto our taxonomy."""
        try:
            return await request
        except AuthenticationError as e:
            raise AuthorizationRejected(_error_detail(e)) from e
        except APITimeoutError as e:
            raise OperationTimedOut(self.timeout) from e
        except APIConnectionError as e:
            raise RequestFailed(None, str(e), operation) from e
        except APIStatusError as e:
            raise RequestFailed(e.status_code, _error_detail(e), operation) from e

    async def send_prompt(
        self,
        prompt: str,
        model: Optional[ModelLike] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        """Send a text prompt and return the model's answer.

        Args:
            prompt: Prompt text (required)
            model: Model identifier (defaults to the configured chat model)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            Text of the first candidate response

        Raises:
            ValueError: If prompt is empty
            EmptyResult: If the response carries no text
            AuthExhausted, RequestFailed, OperationTimedOut, CredentialUnavailable
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required and cannot be empty")

        model_name = _value(model or self.config.models.chat)

        async def attempt(token: str) -> str:
            completion = await self._call(
                "Prompt request",
                self._api(token).chat.completions.create(
                    model=model_name,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=temperature,
                    max_tokens=max_tokens,
                    stream=False,
                ),
            )
            return _first_message_content(completion)

        return await self.executor.execute(attempt)

    async def upload_file(
        self,
        data: bytes,
        file_name: str,
        mime_type: Union[str, ImageMimeType] = ImageMimeType.JPEG,
    ) -> str:
        """Upload raw bytes and return the identifier assigned by the API.

        Raises:
            ValueError: If data or file_name is empty
            PayloadTooLarge: If data exceeds the upload ceiling (no request is made)
            EmptyResult: If the response carries no file identifier
        """
        if not data:
            raise ValueError("data is required and cannot be empty")
        if not file_name or not file_name.strip():
            raise ValueError("file_name is required and cannot be empty")
        if len(data) > self.max_upload_bytes:
            raise PayloadTooLarge(len(data), self.max_upload_bytes)

        content_type = _value(mime_type)

        async def attempt(token: str) -> str:
            uploaded = await self._call(
                "File upload",
                self._api(token).files.create(
                    file=(file_name, data, content_type),
                    purpose="general",
                ),
            )
            file_id = getattr(uploaded, "id", None)
            if not isinstance(file_id, str) or not file_id.strip():
                raise EmptyResult("Upload response contains no file identifier")
            return file_id

        file_id = await self.executor.execute(attempt)
        logger.info("Uploaded %s (%d bytes) as %s", file_name, len(data), file_id)
        return file_id

    async def analyze_file(self, prompt: str, file_id: str, model: Optional[ModelLike] = None) -> str:
        """Ask the model about a previously uploaded file.

        Raises:
            ValueError: If prompt or file_id is empty
            EmptyResult: If the response carries no text
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required and cannot be empty")
        if not file_id or not file_id.strip():
            raise ValueError("file_id is required and cannot be empty")

        model_name = _value(model or self.config.models.vision)

        async def attempt(token: str) -> str:
            completion = await self._call(
                "File analysis",
                self._api(token).chat.completions.create(
                    model=model_name,
                    messages=[{"role": "user", "content": prompt, "attachments": [file_id]}],
                    stream=False,
                ),
            )
            return _first_message_content(completion)

        return await self.executor.execute(attempt)

    async def upload_and_analyze(
        self,
        data: bytes,
        file_name: str,
        prompt: str,
        mime_type: Union[str, ImageMimeType] = ImageMimeType.JPEG,
        model: Optional[ModelLike] = None,
    ) -> Tuple[str, str]:
        """Upload an image and analyze it.

        Returns:
            Tuple of (file identifier, model answer)
        """
        file_id = await self.upload_file(data, file_name, mime_type)
        answer = await self.analyze_file(prompt, file_id, model)
        return file_id, answer
