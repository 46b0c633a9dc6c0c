"""
Amazon Bedrock LLM client wrapper with retry logic and error handling.
"""

import random
import time
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError

from .config import BedrockLLMConfig
from .errors import ProviderError, ProviderTimeoutError
from .logging_config import get_logger
from .providers import Completion, LanguageModelProvider

logger = get_logger(__name__)

# Throttling and transient service faults are worth another attempt
RETRYABLE_ERROR_CODES = {'ThrottlingException', 'ServiceUnavailableException', 'InternalServerException', 'ModelNotReadyException'}


class BedrockLLMError(ProviderError):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockLLMTimeoutError(BedrockLLMError, ProviderTimeoutError):
    """Bedrock LLM call timed out."""

    def __init__(self, message: str):
        ProviderTimeoutError.__init__(self, message)


class BedrockLLM(LanguageModelProvider):
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig, client: Optional[Any] = None):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (built from config if None)
        """
        self.config = config
        self.model_id = config.model_id

        # Create Bedrock runtime client with timeout configuration
        self.bedrock_runtime = client or boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=config.timeout,
                read_timeout=config.timeout,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def complete(self, prompt: str, temperature: Optional[float] = None, max_tokens: Optional[int] = None) -> Completion:
        """
        Complete a single-turn prompt.

        Args:
            prompt: Full prompt text
            temperature: Temperature for generation (uses config default if None)
            max_tokens: Maximum tokens to generate (uses config default if None)

        Returns:
            Completion with response text and total tokens used

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        messages = [{'role': 'user', 'content': [{'text': prompt}]}]
        text, metrics = self.generate_response(messages=messages,
                                               system_prompt='You are a precise assistant that answers with strict JSON only.',
                                               max_tokens=max_tokens,
                                               temperature=temperature)
        tokens_used = int((metrics or {}).get('totalTokens', 0))
        return Completion(text=text, tokens_used=tokens_used)

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate response using Bedrock LLM with retry logic.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        max_tokens = max_tokens or self.config.max_tokens
        temperature = self.config.temperature if temperature is None else temperature
        stop_sequences = stop_sequences or []

        system = [{'text': system_prompt}]
        inf_params = {
            'maxTokens': max_tokens,
            'temperature': temperature,
            'stopSequences': stop_sequences,
        }

        last_error: Optional[BedrockLLMError] = None
        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts}')

                stream = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                              messages=messages,
                                                              system=system,
                                                              inferenceConfig=inf_params).get('stream')

                msg = ''
                invoke_metrics = None

                if stream:
                    for event in stream:
                        if 'contentBlockDelta' in event:
                            msg += event['contentBlockDelta']['delta'].get('text', '')
                        if 'metadata' in event:
                            invoke_metrics = {**event['metadata'].get('usage', {}), **event['metadata'].get('metrics', {})}

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
                return msg, invoke_metrics

            except (ConnectTimeoutError, ReadTimeoutError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} timed out: {e}')
                last_error = BedrockLLMTimeoutError(f'Bedrock LLM timed out after {attempt + 1} attempts: {e}')

            except ClientError as e:
                code = e.response.get('Error', {}).get('Code', '')
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed ({code}): {e}')
                if code not in RETRYABLE_ERROR_CODES:
                    raise BedrockLLMError(f'Bedrock LLM request rejected ({code}): {e}', retryable=False)
                last_error = BedrockLLMError(f'Bedrock LLM failed after {attempt + 1} attempts: {e}', retryable=True)

            except BotoCoreError as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')
                last_error = BedrockLLMError(f'Bedrock LLM failed after {attempt + 1} attempts: {e}', retryable=True)

            if attempt < self.config.retry_attempts - 1:
                # Exponential backoff with jitter
                delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                time.sleep(delay)

        raise last_error or BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_messages = [{'role': 'user', 'content': [{'text': 'Hi'}]}]
            response, _ = self.generate_response(messages=test_messages,
                                                 system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                                 max_tokens=10,
                                                 temperature=0.0)
            return len(response.strip()) > 0

        except ProviderError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
