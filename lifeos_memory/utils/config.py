"""
Configuration management for providers, the document store and engine settings.
"""

import os
from dataclasses import dataclass, field
from typing import Dict

from dotenv import load_dotenv

load_dotenv()

CONTEXTS = ('work', 'personal', 'family')


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    timeout: int = 60


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    batch_size: int = 96
    timeout: int = 60


@dataclass
class OpenSearchConfig:
    """Configuration for the OpenSearch document store."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int
    service: str = 'aoss'


@dataclass
class SearchConfig:
    """Configuration for multi-dimensional retrieval."""
    semantic_weight: float = 0.60
    entity_weight: float = 0.20
    temporal_weight: float = 0.15
    keyword_weight: float = 0.05
    default_limit: int = 10
    default_threshold: float = 0.1
    recency_half_life_days: float = 30.0
    candidate_pool_size: int = 500

    def weights(self) -> Dict[str, float]:
        return {
            'semantic': self.semantic_weight,
            'entity': self.entity_weight,
            'temporal': self.temporal_weight,
            'keyword': self.keyword_weight,
        }


@dataclass
class PatternConfig:
    """Configuration for learning-pattern consolidation."""
    overlap_prefix_length: int = 20
    boost_factor: float = 0.1
    contradiction_threshold: int = 3


@dataclass
class PipelineConfig:
    """Configuration for the ingestion pipeline."""
    max_workers: int = 4
    classifier_mode: str = 'llm'  # 'llm' or 'rules'
    classifier_temperature: float = 0.1
    classifier_max_tokens: int = 300
    extraction_temperature: float = 0.3
    extraction_max_tokens: int = 500


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    mcp: MCPConfig
    search: SearchConfig = field(default_factory=SearchConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '1024')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          timeout=int(os.getenv('BEDROCK_LLM_TIMEOUT', '60')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'cohere.embed-english-v3'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')),
                                              batch_size=int(os.getenv('BEDROCK_EMBED_BATCH_SIZE', '96')),
                                              timeout=int(os.getenv('BEDROCK_EMBED_TIMEOUT', '60')))

    # Document store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'lifeos'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'))

    # Retrieval configuration
    search_config = SearchConfig(semantic_weight=float(os.getenv('SEARCH_SEMANTIC_WEIGHT', '0.60')),
                                 entity_weight=float(os.getenv('SEARCH_ENTITY_WEIGHT', '0.20')),
                                 temporal_weight=float(os.getenv('SEARCH_TEMPORAL_WEIGHT', '0.15')),
                                 keyword_weight=float(os.getenv('SEARCH_KEYWORD_WEIGHT', '0.05')),
                                 default_limit=int(os.getenv('SEARCH_DEFAULT_LIMIT', '10')),
                                 default_threshold=float(os.getenv('SEARCH_DEFAULT_THRESHOLD', '0.1')),
                                 recency_half_life_days=float(os.getenv('SEARCH_RECENCY_HALF_LIFE_DAYS', '30')),
                                 candidate_pool_size=int(os.getenv('SEARCH_CANDIDATE_POOL_SIZE', '500')))

    # Learning pattern configuration
    pattern_config = PatternConfig(overlap_prefix_length=int(os.getenv('PATTERN_OVERLAP_PREFIX_LENGTH', '20')),
                                   boost_factor=float(os.getenv('PATTERN_BOOST_FACTOR', '0.1')),
                                   contradiction_threshold=int(os.getenv('PATTERN_CONTRADICTION_THRESHOLD', '3')))

    # Pipeline configuration
    pipeline_config = PipelineConfig(max_workers=int(os.getenv('PIPELINE_MAX_WORKERS', '4')),
                                     classifier_mode=os.getenv('PIPELINE_CLASSIFIER_MODE', 'llm'))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     mcp=mcp_config,
                     search=search_config,
                     patterns=pattern_config,
                     pipeline=pipeline_config)


# Global configuration instance
config = load_config()
