"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import Any, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError

from .config import BedrockEmbedConfig
from .errors import ProviderError, ProviderTimeoutError
from .logging_config import get_logger
from .providers import DOCUMENT_MODE, EMBED_MODES, QUERY_MODE, EmbeddingProvider, EmbeddingResult

logger = get_logger(__name__)

COHERE_INPUT_TYPES = {DOCUMENT_MODE: 'search_document', QUERY_MODE: 'search_query'}


class BedrockEmbedError(ProviderError):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbedTimeoutError(BedrockEmbedError, ProviderTimeoutError):
    """Bedrock embedding call timed out."""

    def __init__(self, message: str):
        ProviderTimeoutError.__init__(self, message)


class BedrockEmbed(EmbeddingProvider):
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig, client: Optional[Any] = None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (built from config if None)
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        # Create Bedrock runtime client
        self.bedrock = client or boto3.client(service_name='bedrock-runtime',
                                              region_name=config.region,
                                              config=BotoConfig(connect_timeout=config.timeout,
                                                                read_timeout=config.timeout,
                                                                retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        last_error: Optional[BedrockEmbedError] = None
        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                accept = 'application/json'
                content_type = 'application/json'
                response = self.bedrock.invoke_model(body=body, modelId=self.model_id, accept=accept, contentType=content_type)

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ConnectTimeoutError, ReadTimeoutError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} timed out: {e}')
                last_error = BedrockEmbedTimeoutError(f'Bedrock Embed timed out after {attempt + 1} attempts: {e}')

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')
                last_error = BedrockEmbedError(f'Bedrock Embed failed after {attempt + 1} attempts: {e}', retryable=True)

            except json.JSONDecodeError as e:
                raise BedrockEmbedError(f'Bedrock Embed returned an unreadable body: {e}')

            if attempt < self.config.retry_attempts - 1:
                # Exponential backoff with jitter
                delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                time.sleep(delay)

        raise last_error or BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def embed(self, texts: List[str], mode: str = DOCUMENT_MODE) -> EmbeddingResult:
        """
        Generate embeddings for a batch of texts.

        Cohere models embed a whole batch per request; Titan models take one
        text per request. Blank texts map to zero vectors without a request.

        Args:
            texts: Texts to embed
            mode: 'document' for stored content, 'query' for search input

        Returns:
            EmbeddingResult with one vector per input text, in input order

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if mode not in EMBED_MODES:
            raise BedrockEmbedError(f'Unsupported embedding mode: {mode}')

        zero = [0.0] * self.output_embedding_length
        vectors: List[List[float]] = [zero for _ in texts]
        pending = [(i, text) for i, text in enumerate(texts) if text and text.strip()]
        if len(pending) < len(texts):
            logger.warning(f'{len(texts) - len(pending)} empty text(s) provided for {mode} embedding')
        if not pending:
            return EmbeddingResult(vectors=vectors, tokens_used=0)

        model = self.model_id.lower()
        tokens_used = 0

        if 'cohere' in model:
            if self.output_embedding_length != 1024:
                raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

            for start in range(0, len(pending), self.config.batch_size):
                batch = pending[start:start + self.config.batch_size]
                data = {'input_type': COHERE_INPUT_TYPES[mode], 'texts': [text for _, text in batch]}
                response = self._call_with_retry(data)
                embeddings = response.get('embeddings') or []
                if len(embeddings) != len(batch):
                    raise BedrockEmbedError(f'Expected {len(batch)} embeddings, got {len(embeddings)}')
                for (index, _), embedding in zip(batch, embeddings):
                    vectors[index] = embedding

        elif 'titan' in model:
            for index, text in pending:
                data = {'inputText': text, 'dimensions': self.output_embedding_length}
                response = self._call_with_retry(data)
                vectors[index] = response.get('embedding', zero)
                tokens_used += int(response.get('inputTextTokenCount', 0))

        else:
            raise BedrockEmbedError(f'Unsupported model for embedding: {self.model_id}')

        logger.debug(f'Embedded {len(pending)} text(s) in {mode} mode')
        return EmbeddingResult(vectors=vectors, tokens_used=tokens_used)

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_document('test')
            return len(test_embedding) == self.output_embedding_length

        except ProviderError as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
