"""One remote call per list of texts, with response shape validation."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from mclang_flow.parsers.base import BaseParser
from mclang_flow.parsers.json_list import JsonListParser
from mclang_flow.prompts.builder import build_messages
from mclang_flow.providers.base import BaseProvider
from mclang_flow.providers.openai_compat import OpenAICompatProvider
from mclang_flow.providers.retry import RetryableTransport, RetryPolicy
from mclang_flow.registry.config_store import AppConfig
from mclang_flow.utils.cancellation import CancellationToken
from mclang_flow.utils.log_protocol import PipelineObserver


class TextBatchTranslator:
    def __init__(
        self,
        provider: BaseProvider,
        transport: RetryableTransport,
        *,
        prompt_template: str = "",
        parser: Optional[BaseParser] = None,
        settings: Optional[Dict[str, Any]] = None,
        source_lang: str = "",
        target_lang: str = "",
    ):
        self.provider = provider
        self.transport = transport
        self.prompt_template = prompt_template
        self.parser = parser or JsonListParser()
        self.settings = dict(settings or {})
        self.source_lang = source_lang
        self.target_lang = target_lang

    @classmethod
    def from_config(
        cls, config: AppConfig, observer: Optional[PipelineObserver] = None
    ) -> "TextBatchTranslator":
        provider = OpenAICompatProvider(config.api_profile())
        transport = RetryableTransport(
            RetryPolicy(max_retries=config.max_retries, base_delay=config.retry_delay),
            timeout=config.timeout,
            rate_limiter=provider.rate_limiter,
            observer=observer,
            io_workers=max(1, config.network_concurrency),
        )
        return cls(
            provider,
            transport,
            prompt_template=config.prompt,
            source_lang=config.source_lang,
            target_lang=config.target_lang,
        )

    def close(self) -> None:
        self.transport.close()

    def translate_texts(
        self,
        texts: Sequence[str],
        context_id: str,
        cancel: Optional[CancellationToken] = None,
    ) -> List[str]:
        """Translate ``texts`` in one call; the result has exactly ``len(texts)`` items.

        Raises ``ProviderError`` for transport failures, ``ParserError`` when the
        reply is not a same-length list of strings, ``TranslationCancelled`` on
        stop requests.
        """
        texts = list(texts)
        if not texts:
            return []
        messages = build_messages(
            self.prompt_template,
            context_id,
            texts,
            source_lang=self.source_lang,
            target_lang=self.target_lang,
        )
        response = self.transport.send_with_retry(
            lambda: self.provider.build_request(messages, self.settings),
            cancel,
            label=context_id,
        )
        content = self.provider.extract_text(response)
        return self.parser.parse(content, len(texts))
